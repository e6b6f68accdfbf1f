"""Clause approval engine shared by the mandatory (step 3) and optional/custom
(step 4) clause collections.

Clause status only changes after the gateway confirms an action; the one
exception is a failed reanalysis, which marks the clause
``regeneration_failed`` so it can be told apart from a never-drafted clause.
"""

from typing import Dict, List, Optional, Tuple

import msgspec

from drafting import clause_state
from drafting.clause_state import ClauseAction
from drafting.error_handling import (
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from drafting.logging_config import get_session_logger
from drafting.models import (
    Clause,
    ClauseApprovalResult,
    ClauseKind,
    ClauseStatus,
    ClauseUpdateResult,
)
from drafting.request_discipline import APPROVAL_POLICY, GENERAL_POLICY, CallPolicy


def clause_busy_key(clause_id: str) -> str:
    return f"clause:{clause_id}"


class ClauseApprovalEngine:
    """Holds one clause collection and its single-clause review cursor.

    Args:
        kind: Which collection this engine manages
        gateway: GenerationGateway used for approve/reject/reanalyze
        discipline: RequestDiscipline wrapping every gateway call
        general_policy: Policy for reanalysis calls
        approval_policy: Policy for approve/reject calls
    """

    def __init__(
        self,
        kind: ClauseKind,
        gateway,
        discipline,
        general_policy: CallPolicy = GENERAL_POLICY,
        approval_policy: CallPolicy = APPROVAL_POLICY
    ):
        self.kind = ClauseKind(kind)
        self.gateway = gateway
        self.discipline = discipline
        self.general_policy = general_policy
        self.approval_policy = approval_policy

        self.clauses: List[Clause] = []
        self.current_clause_index = 0
        self.gateway_certified = False
        self.drafts: Dict[str, str] = {}

    @property
    def is_mandatory_collection(self) -> bool:
        return self.kind == ClauseKind.MANDATORY

    def load(self, clauses: List[Clause], current_index: int = 0, certified: bool = False) -> None:
        """Replace the collection, e.g. after generation or on resume."""
        ordered = sorted(clauses, key=lambda c: c.order)
        self.clauses = [self._normalize(c) for c in ordered]
        self.gateway_certified = bool(certified)
        self.drafts = {
            c.clause_id: c.content for c in self.clauses if c.status == ClauseStatus.EDITING
        }
        self.current_clause_index = self._clamp(current_index)

    def _normalize(self, clause: Clause) -> Clause:
        # Collection membership decides rejectability
        if clause.is_mandatory != self.is_mandatory_collection:
            return msgspec.structs.replace(clause, is_mandatory=self.is_mandatory_collection)
        return clause

    def _clamp(self, index: int) -> int:
        if not self.clauses:
            return 0
        return min(max(int(index), 0), len(self.clauses) - 1)

    def _find(self, clause_id: str) -> Tuple[int, Clause]:
        for i, clause in enumerate(self.clauses):
            if clause.clause_id == clause_id:
                return i, clause
        raise NotFoundError(
            f"Clause {clause_id} not found in {self.kind.value} clauses",
            user_message="This clause could not be found. Please refresh the session."
        )

    def _store(self, index: int, clause: Clause) -> Clause:
        clause = self._normalize(clause)
        self.clauses[index] = clause
        return clause

    def get(self, clause_id: str) -> Clause:
        return self._find(clause_id)[1]

    # Cursor

    @property
    def current_clause(self) -> Optional[Clause]:
        if not self.clauses:
            return None
        return self.clauses[self.current_clause_index]

    def _settled(self, clause: Clause) -> bool:
        if self.is_mandatory_collection:
            return clause.status == ClauseStatus.APPROVED
        return clause_state.is_terminal(clause)

    def can_advance(self) -> bool:
        current = self.current_clause
        if current is None or self.current_clause_index >= len(self.clauses) - 1:
            return False
        return self._settled(current)

    def can_retreat(self) -> bool:
        return self.current_clause_index > 0

    def advance(self) -> int:
        if not self.can_advance():
            raise ValidationError(
                "Cursor cannot advance past an unsettled clause",
                user_message="Please finish reviewing this clause before moving on."
            )
        self.current_clause_index += 1
        return self.current_clause_index

    def retreat(self) -> int:
        if self.can_retreat():
            self.current_clause_index -= 1
        return self.current_clause_index

    def move_to(self, clause_id: str) -> int:
        index, _ = self._find(clause_id)
        self.current_clause_index = index
        return index

    # Local editing

    def begin_edit(self, clause_id: str) -> Clause:
        index, clause = self._find(clause_id)
        edited = clause_state.begin_edit(clause)
        if clause.status == ClauseStatus.APPROVED and self.is_mandatory_collection:
            # Reopening an approved clause withdraws any completion certificate
            self.gateway_certified = False
        self.drafts[clause_id] = clause.content
        return self._store(index, edited)

    def update_draft(self, clause_id: str, text: str) -> None:
        _, clause = self._find(clause_id)
        if clause.status != ClauseStatus.EDITING:
            raise ConflictError(
                f"Clause {clause_id} is not being edited",
                user_message="Start editing the clause before changing its text."
            )
        self.drafts[clause_id] = text

    def cancel_edit(self, clause_id: str) -> Clause:
        index, clause = self._find(clause_id)
        reverted = clause_state.cancel_edit(clause)
        self.drafts.pop(clause_id, None)
        return self._store(index, reverted)

    # Gateway-confirmed actions

    async def approve(
        self,
        session_id: str,
        clause_id: str,
        modifications: Optional[str] = None
    ) -> ClauseApprovalResult:
        """Approve a clause; an edited clause sends its draft as modifications."""
        _, clause = self._find(clause_id)
        clause_state.check_transition(clause, ClauseAction.APPROVE)
        if modifications is None and clause.status == ClauseStatus.EDITING:
            modifications = self.drafts.get(clause_id, clause.content)

        result: ClauseApprovalResult = await self.discipline.call(
            self.approval_policy,
            lambda: self.gateway.approve_clause(session_id, clause_id, True, modifications),
            busy_key=clause_busy_key(clause_id)
        )
        self._confirm(session_id, clause_id, result.clause, "approved")
        if result.step3_completed:
            self.gateway_certified = True
        self._auto_advance(clause_id)
        return result

    async def reject(self, session_id: str, clause_id: str) -> ClauseApprovalResult:
        """Reject an optional or custom clause. Mandatory clauses refuse locally."""
        _, clause = self._find(clause_id)
        try:
            clause_state.check_transition(clause, ClauseAction.REJECT)
        except ConflictError:
            get_session_logger(session_id, "ClauseApprovalEngine").info(
                "Reject refused", clause_id=clause_id, kind=self.kind.value
            )
            raise

        result: ClauseApprovalResult = await self.discipline.call(
            self.approval_policy,
            lambda: self.gateway.approve_clause(session_id, clause_id, False, None),
            busy_key=clause_busy_key(clause_id)
        )
        self._confirm(session_id, clause_id, result.clause, "rejected")
        self._auto_advance(clause_id)
        return result

    async def reanalyze(
        self,
        session_id: str,
        clause_id: str,
        modifications: Optional[str] = None
    ) -> ClauseUpdateResult:
        """Ask the gateway to redraft a clause from the user's edits."""
        index, clause = self._find(clause_id)
        clause_state.check_transition(clause, ClauseAction.REANALYZE)
        if modifications is None:
            modifications = self.drafts.get(clause_id) or clause.content
        if not modifications or not modifications.strip():
            raise ValidationError(
                "Reanalysis requires modification text",
                user_message="Describe the changes you want before requesting a reanalysis."
            )

        try:
            result: ClauseUpdateResult = await self.discipline.call(
                self.general_policy,
                lambda: self.gateway.reanalyze_clause(session_id, clause_id, modifications),
                busy_key=clause_busy_key(clause_id)
            )
        except TransientError as e:
            self._store(index, clause_state.mark_regeneration_failed(self.clauses[index]))
            self.drafts[clause_id] = modifications
            get_session_logger(session_id, "ClauseApprovalEngine").warning(
                "Clause reanalysis failed",
                clause_id=clause_id,
                error_type=type(e).__name__
            )
            raise

        self._confirm(session_id, clause_id, result.clause, "reanalyzed")
        return result

    def _confirm(self, session_id: str, clause_id: str, confirmed: Clause, action: str) -> None:
        # The confirmed clause replaces the local copy wholesale
        index, _ = self._find(clause_id)
        stored = self._store(index, confirmed)
        self.drafts.pop(clause_id, None)
        get_session_logger(session_id, "ClauseApprovalEngine").info(
            f"Clause {action}",
            clause_id=clause_id,
            kind=self.kind.value,
            status=stored.status.value
        )

    def _auto_advance(self, clause_id: str) -> None:
        current = self.current_clause
        if current is not None and current.clause_id == clause_id and self.can_advance():
            self.current_clause_index += 1

    # Gates

    def all_processed(self) -> bool:
        if self.is_mandatory_collection:
            if self.gateway_certified:
                return True
            return bool(self.clauses) and all(
                c.status == ClauseStatus.APPROVED for c in self.clauses
            )
        return all(clause_state.is_terminal(c) for c in self.clauses)

    def progress(self) -> Tuple[int, int]:
        processed = sum(1 for c in self.clauses if self._settled(c))
        return processed, len(self.clauses)
