"""
Session Orchestrator - facade over the contract generation workflow.

Composes the step controller, one clause approval engine per clause
collection and the request discipline around a GenerationGateway:

    load -> prompt analysis -> template/session -> mandatory clauses
         -> optional/custom clauses -> preview -> complete

Key Features:
- Every collaborator is injected, so each can be replaced in tests
- Gateway responses carrying a session replace the local copy wholesale
- The step index only moves backwards on explicit user navigation
- The last user-facing error is kept in an auto-clearing notice
"""

import asyncio
import os
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional

import msgspec
from loguru import logger

from drafting.clause_engine import ClauseApprovalEngine
from drafting.error_handling import (
    ContractDraftingError,
    ErrorNotice,
    NotFoundError,
    ValidationError,
)
from drafting.logging_config import get_session_logger
from drafting.models import (
    AnalysisResult,
    Clause,
    ClauseKind,
    ClauseStatus,
    CustomClauseSpec,
    PartyInfo,
    Session,
    SessionStatus,
    TemplateSuggestion,
    new_placeholder_id,
    utc_now,
)
from drafting.request_discipline import (
    APPROVAL_POLICY,
    GENERAL_POLICY,
    READ_POLICY,
    SEARCH_DEBOUNCE_SECONDS,
    CallPolicy,
    Debouncer,
    RequestDiscipline,
    policies_from_env,
)
from drafting.step_controller import STEP_DATA_KEYS, ResumeResult, StepController, encode_step_data
from tools.template_catalog import DEFAULT_MATCH_THRESHOLD, filter_by_threshold
from tools.text_metrics import (
    MIN_EXPLANATION_WORDS,
    count_words,
    validate_custom_clause,
    validate_prompt,
    validate_step3_inputs,
)


def _reported(func: Callable) -> Callable:
    """Record ContractDraftingErrors raised by an action in ``error_notice``."""
    if asyncio.iscoroutinefunction(func):
        @wraps(func)
        async def async_wrapper(self, *args, **kwargs):
            self.error_notice.clear()
            try:
                return await func(self, *args, **kwargs)
            except ContractDraftingError as e:
                self.error_notice.report(e)
                raise
        return async_wrapper

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        self.error_notice.clear()
        try:
            return func(self, *args, **kwargs)
        except ContractDraftingError as e:
            self.error_notice.report(e)
            raise
    return wrapper


class SessionOrchestrator:
    """
    Coordinates one user's contract generation session.

    Args:
        gateway: GenerationGateway performing the AI-backed operations
        auth: AuthProvider resolving the bearer credential per call
        store: Optional SessionStore; when set it is the source for ``load``
            and is patched after each step completion
        party_directory: Optional PartyDirectory used by ``search_party``
        discipline: RequestDiscipline (built from ``auth`` when omitted)
        template_threshold: Minimum relevance for a template to be shown
        clock: Callable returning the current UTC datetime
        policies: Call policies keyed by general/approval/read
        search_delay: Quiet period before a party search fires
        error_notice: Notice holding the last user-facing error
    """

    def __init__(
        self,
        gateway,
        auth,
        store=None,
        party_directory=None,
        discipline: Optional[RequestDiscipline] = None,
        template_threshold: float = DEFAULT_MATCH_THRESHOLD,
        clock: Optional[Callable[[], datetime]] = None,
        policies: Optional[Dict[str, CallPolicy]] = None,
        search_delay: float = SEARCH_DEBOUNCE_SECONDS,
        error_notice: Optional[ErrorNotice] = None
    ):
        self.gateway = gateway
        self.auth = auth
        self.store = store
        self.party_directory = party_directory
        self.discipline = discipline or RequestDiscipline(auth)
        self.template_threshold = template_threshold
        self._clock = clock or utc_now
        self.policies = policies or {
            "general": GENERAL_POLICY,
            "approval": APPROVAL_POLICY,
            "read": READ_POLICY,
        }
        self.error_notice = error_notice or ErrorNotice()

        self.steps = StepController()
        self.engines: Dict[ClauseKind, ClauseApprovalEngine] = {
            kind: ClauseApprovalEngine(
                kind,
                gateway,
                self.discipline,
                general_policy=self.policies["general"],
                approval_policy=self.policies["approval"]
            )
            for kind in ClauseKind
        }
        self.session: Optional[Session] = None
        self._search = Debouncer(self._lookup_party, delay=search_delay)

        logger.info(
            "SessionOrchestrator initialized",
            template_threshold=template_threshold,
            has_store=store is not None,
            has_party_directory=party_directory is not None
        )

    # Accessors

    @property
    def current_step(self) -> int:
        return self.steps.current_step

    @property
    def is_complete(self) -> bool:
        return self.steps.is_complete

    @property
    def completion_percentage(self) -> int:
        return self.steps.completion_percentage

    def step_data(self, n: int) -> msgspec.Struct:
        return self.steps.data_for(n)

    def engine(self, kind: ClauseKind = ClauseKind.MANDATORY) -> ClauseApprovalEngine:
        return self.engines[ClauseKind(kind)]

    def is_busy(self, key: str) -> bool:
        return self.discipline.is_busy(key)

    @property
    def _logger(self):
        return get_session_logger(self.session.id if self.session else None, "SessionOrchestrator")

    # Session lifecycle

    @_reported
    async def load(self, session_id: Optional[str] = None) -> Optional[ResumeResult]:
        """Restore a persisted session, or start fresh when no id is given."""
        if session_id is None:
            self._reset()
            logger.info("Starting new contract generation session")
            return None

        if self.store is not None:
            snapshot = await self._store_call("read", self.store.get, session_id, busy_key="load")
        else:
            snapshot = await self.discipline.call(
                self.policies["read"],
                lambda: self.gateway.get_session(session_id),
                busy_key="load"
            )
        if snapshot is None:
            raise NotFoundError(f"Session {session_id} not found")

        if snapshot.session_status != SessionStatus.ABANDONED and snapshot.is_expired(self._clock()):
            snapshot = await self._persist_abandoned(snapshot)

        self._reset()
        result = self.steps.resume(snapshot)
        self.session = snapshot
        self._load_engines(result.step_data)

        self._logger.info(
            "Session resumed",
            current_step=result.current_step,
            session_status=snapshot.session_status.value,
            anomalies=len(result.anomalies)
        )
        return result

    def _reset(self) -> None:
        self.session = None
        self.steps.reset()
        for engine in self.engines.values():
            engine.load([])
        self._search.cancel()

    def _abandon(self, snapshot: Session) -> Session:
        get_session_logger(snapshot.id, "SessionOrchestrator").warning(
            "Session expired, marking abandoned",
            expires_at=snapshot.expires_at.isoformat() if snapshot.expires_at else None
        )
        return msgspec.structs.replace(snapshot, session_status=SessionStatus.ABANDONED)

    async def _persist_abandoned(self, snapshot: Session) -> Session:
        abandoned = self._abandon(snapshot)
        if self.store is None or snapshot.is_placeholder:
            return abandoned
        return await self._store_call(
            "general", self.store.patch, snapshot.id, {"session_status": SessionStatus.ABANDONED.value}
        )

    def _load_engines(self, step_data: Dict[int, Any]) -> None:
        step3, step4 = step_data[3], step_data[4]
        self.engines[ClauseKind.MANDATORY].load(
            step3.generated_clauses, step3.current_clause_index, certified=step3.step3_completed
        )
        self.engines[ClauseKind.OPTIONAL].load(step4.optional_clauses, step4.current_clause_index)
        self.engines[ClauseKind.CUSTOM].load(step4.custom_clauses)

    def _ensure_mutable(self) -> None:
        if self.session is None:
            return
        if self.session.session_status == SessionStatus.ABANDONED:
            raise ValidationError(
                f"Session {self.session.id} is abandoned",
                user_message="This session has expired. Please start a new contract."
            )
        if self.session.is_expired(self._clock()):
            self.session = self._abandon(self.session)
            raise ValidationError(
                f"Session {self.session.id} expired",
                user_message="This session has expired. Please start a new contract."
            )
        if self.steps.is_complete or self.session.session_status == SessionStatus.COMPLETED:
            raise ValidationError(
                f"Session {self.session.id} is completed",
                user_message="This contract has already been completed."
            )

    def _require_step(self, step: int) -> None:
        if self.steps.current_step != step:
            raise ValidationError(
                f"Action requires step {step}, session is on step {self.steps.current_step}",
                user_message="This action is not available on the current step."
            )

    def _require_real_session(self) -> Session:
        if self.session is None or self.session.is_placeholder:
            raise ValidationError(
                "No server session yet",
                user_message="Please select a template to start your contract first."
            )
        return self.session

    def _apply_session(self, session: Optional[Session]) -> None:
        """Adopt a session returned by the gateway as the new local truth."""
        if session is None:
            return
        previous = self.session
        if previous is not None and previous.id != session.id:
            get_session_logger(session.id, "SessionOrchestrator").info(
                "Session id replaced", previous_id=previous.id
            )
        self.session = session
        self.steps.reconcile(session)

    def _mirror_local_step(self) -> None:
        # Keep the cached session's step fields in line with the controller
        if self.session is None:
            return
        self.session = msgspec.structs.replace(
            self.session,
            current_step=self.steps.current_step,
            completion_percentage=float(self.steps.completion_percentage),
            session_status=SessionStatus.COMPLETED if self.steps.is_complete else self.session.session_status
        )

    async def _store_call(self, policy: str, method: Callable, *args, busy_key: Optional[str] = None) -> Any:
        """Run a blocking SessionStore method in a worker thread under the request discipline."""
        return await self.discipline.call(
            self.policies[policy],
            lambda: asyncio.to_thread(method, *args),
            busy_key=busy_key
        )

    def _write_through(self, session: Session, changes: Dict[str, Any]) -> Session:
        if self.store.get(session.id) is None:
            self.store.put(session)
        return self.store.patch(session.id, changes)

    async def _persist(self, changes: Dict[str, Any]) -> None:
        if self.store is None or self.session is None or self.session.is_placeholder:
            return
        await self._store_call("general", self._write_through, self.session, changes)

    async def _persist_step_data(self, *steps: int) -> None:
        await self._persist({
            "session_data": {STEP_DATA_KEYS[n]: encode_step_data(self.steps.data_for(n)) for n in steps}
        })

    # Step 1: prompt analysis

    @_reported
    async def analyze_prompt(self, text: str) -> AnalysisResult:
        self._ensure_mutable()
        self._require_step(1)
        ok, error = validate_prompt(text)
        if not ok:
            raise ValidationError(error, user_message=error)

        prompt = text.strip()
        analysis: AnalysisResult = await self.discipline.call(
            self.policies["read"],
            lambda: self.gateway.analyze_prompt(prompt),
            busy_key="analyze"
        )

        self.steps.set_data(1, msgspec.structs.replace(
            self.steps.data_for(1), user_prompt=prompt, ai_analysis=analysis
        ))
        self.steps.set_data(2, msgspec.structs.replace(
            self.steps.data_for(2),
            available_templates=list(analysis.suggested_templates),
            selected_template_id=None
        ))
        self._logger.info(
            "Prompt analyzed",
            can_handle=analysis.can_handle,
            template_count=len(analysis.suggested_templates)
        )
        return analysis

    @_reported
    async def submit_prompt(self, text: str) -> AnalysisResult:
        """Analyze the prompt and complete step 1 under a local placeholder id."""
        analysis = await self.analyze_prompt(text)
        if self.session is None:
            now = self._clock()
            self.session = Session(
                id=new_placeholder_id(),
                session_status=SessionStatus.ANALYZING,
                initial_user_prompt=self.steps.data_for(1).user_prompt,
                created_at=now,
                updated_at=now,
                last_activity_at=now
            )
        self.steps.complete_step(1, session=self.session)
        self._mirror_local_step()
        return analysis

    # Step 2: template selection and session creation

    def visible_templates(self) -> List[TemplateSuggestion]:
        """Templates at or above the match threshold, or all when none qualify."""
        return filter_by_threshold(self.steps.data_for(2).available_templates, self.template_threshold)

    @_reported
    def select_template(self, template_id: str) -> TemplateSuggestion:
        self._ensure_mutable()
        self._require_step(2)
        step2 = self.steps.data_for(2)
        for template in step2.available_templates:
            if template.template_id == template_id:
                self.steps.set_data(2, msgspec.structs.replace(step2, selected_template_id=template_id))
                self._logger.info("Template selected", template_id=template_id)
                return template
        raise ValidationError(
            f"Template {template_id} is not among the suggestions",
            user_message="Please select a template from the suggested list."
        )

    @_reported
    async def create_session(self) -> Session:
        """Create the server session; its id replaces the local placeholder."""
        self._ensure_mutable()
        self._require_step(2)
        step1, step2 = self.steps.data_for(1), self.steps.data_for(2)
        if not step2.selected_template_id:
            raise ValidationError("No template selected", user_message="Please select a template.")

        template_id = step2.selected_template_id
        session: Session = await self.discipline.call(
            self.policies["general"],
            lambda: self.gateway.create_session(template_id, step1.user_prompt, step1.ai_analysis),
            busy_key="create_session"
        )
        if session.is_placeholder:
            raise ValidationError(
                f"Gateway returned placeholder id {session.id}",
                user_message="The session could not be created. Please try again."
            )

        self._apply_session(session)
        await self._persist_step_data(1, 2)
        return session

    # Step transitions

    @_reported
    async def apply_step_completion(self, n: int, data: Any = None) -> int:
        """Complete step ``n``; step 2 creates the server session when needed."""
        self._ensure_mutable()
        if n == 2 and (self.session is None or self.session.is_placeholder):
            await self.create_session()
        if data is None:
            data = self._build_step_data(n)

        completion = self.steps.prepare_completion(
            n,
            data,
            session=self.session,
            mandatory_engine=self.engines[ClauseKind.MANDATORY],
            optional_engines=[self.engines[ClauseKind.OPTIONAL], self.engines[ClauseKind.CUSTOM]]
        )
        await self._persist(completion.changes(self.steps.total_steps))
        step = self.steps.commit(completion, session_id=self.session.id if self.session else None)
        self._mirror_local_step()
        return step

    def _build_step_data(self, n: int) -> msgspec.Struct:
        data = self.steps.data_for(n)
        if n == 3:
            mandatory = self.engines[ClauseKind.MANDATORY]
            return msgspec.structs.replace(
                data,
                generated_clauses=list(mandatory.clauses),
                current_clause_index=mandatory.current_clause_index,
                step3_completed=mandatory.gateway_certified
            )
        if n == 4:
            optional = self.engines[ClauseKind.OPTIONAL]
            return msgspec.structs.replace(
                data,
                optional_clauses=list(optional.clauses),
                custom_clauses=list(self.engines[ClauseKind.CUSTOM].clauses),
                selected_optional_clauses=[
                    c.clause_id for c in optional.clauses if c.status == ClauseStatus.APPROVED
                ],
                current_clause_index=optional.current_clause_index
            )
        return data

    def _sync_clause_data(self, kind: ClauseKind) -> None:
        step = 3 if kind == ClauseKind.MANDATORY else 4
        self.steps.set_data(step, self._build_step_data(step))

    def go_back(self) -> int:
        step = self.steps.go_back()
        self._mirror_local_step()
        return step

    # Step 3: explanation, parties, mandatory clauses

    def set_explanation(self, text: str) -> int:
        self.steps.set_data(3, msgspec.structs.replace(self.steps.data_for(3), user_explanation=text))
        return self.explanation_word_count

    @property
    def explanation_word_count(self) -> int:
        return count_words(self.steps.data_for(3).user_explanation)

    @property
    def can_generate_clauses(self) -> bool:
        return self.explanation_word_count >= MIN_EXPLANATION_WORDS

    def set_actor(self, party: PartyInfo) -> None:
        """Party 1 is always the authenticated user."""
        self._set_fields(party1=party)

    def set_party(self, slot: int, party: Optional[PartyInfo]) -> None:
        if slot == 1:
            raise ValidationError(
                "Party 1 is derived from the authenticated user",
                user_message="The first party is always you."
            )
        if slot != 2:
            raise ValidationError(f"Unknown party slot {slot}")
        self._set_fields(party2=party)

    def set_contract_detail(self, key: str, value: str) -> None:
        details = dict(self.steps.data_for(3).mandatory_fields.contract_details)
        details[key] = value
        self._set_fields(contract_details=details)

    def _set_fields(self, **changes) -> None:
        step3 = self.steps.data_for(3)
        fields = msgspec.structs.replace(step3.mandatory_fields, **changes)
        self.steps.set_data(3, msgspec.structs.replace(step3, mandatory_fields=fields))

    @_reported
    async def search_party(self, external_id: str) -> Optional[PartyInfo]:
        """Debounced lookup of the counterparty by id."""
        return await self._search(external_id)

    async def _lookup_party(self, external_id: str) -> Optional[PartyInfo]:
        if self.party_directory is None:
            raise ValidationError("No party directory configured")
        external_id = (external_id or "").strip()
        if not external_id:
            return None
        party = await self.discipline.call(
            self.policies["read"],
            lambda: self.party_directory.lookup(external_id),
            busy_key="search"
        )
        self._logger.info("Party lookup finished", external_id=external_id, found=party is not None)
        return party

    @_reported
    async def generate_mandatory_clauses(self) -> List[Clause]:
        self._ensure_mutable()
        self._require_step(3)
        session = self._require_real_session()
        step2, step3 = self.steps.data_for(2), self.steps.data_for(3)
        ok, error = validate_step3_inputs(step3.user_explanation, step3.mandatory_fields)
        if not ok:
            raise ValidationError(error, user_message=error)
        template_id = step2.selected_template_id or session.selected_template_id
        if not template_id:
            raise ValidationError("No template selected", user_message="Please select a template.")

        result = await self.discipline.call(
            self.policies["general"],
            lambda: self.gateway.generate_mandatory_clauses(
                session.id, step3.user_explanation, step3.mandatory_fields, template_id
            ),
            busy_key="generate_mandatory"
        )
        if not result.clauses:
            raise ValidationError(
                "Gateway returned no mandatory clauses",
                user_message="No clauses could be generated. Please refine your explanation."
            )
        self.engines[ClauseKind.MANDATORY].load(result.clauses)
        self._apply_session(result.session)
        self._sync_clause_data(ClauseKind.MANDATORY)
        return list(self.engines[ClauseKind.MANDATORY].clauses)

    # Clause actions, shared by steps 3 and 4

    def _clause_engine(self, kind: ClauseKind) -> ClauseApprovalEngine:
        kind = ClauseKind(kind)
        self._ensure_mutable()
        self._require_step(3 if kind == ClauseKind.MANDATORY else 4)
        return self.engines[kind]

    @_reported
    async def approve_clause(
        self,
        clause_id: str,
        kind: ClauseKind = ClauseKind.MANDATORY,
        modifications: Optional[str] = None
    ) -> Clause:
        engine = self._clause_engine(kind)
        session = self._require_real_session()
        result = await engine.approve(session.id, clause_id, modifications)
        self._apply_session(result.session)
        self._sync_clause_data(engine.kind)
        return engine.get(clause_id)

    @_reported
    async def reject_clause(self, clause_id: str, kind: ClauseKind = ClauseKind.OPTIONAL) -> Clause:
        engine = self._clause_engine(kind)
        session = self._require_real_session()
        result = await engine.reject(session.id, clause_id)
        self._apply_session(result.session)
        self._sync_clause_data(engine.kind)
        return engine.get(clause_id)

    @_reported
    async def reanalyze_clause(
        self,
        clause_id: str,
        kind: ClauseKind = ClauseKind.MANDATORY,
        modifications: Optional[str] = None
    ) -> Clause:
        engine = self._clause_engine(kind)
        session = self._require_real_session()
        try:
            result = await engine.reanalyze(session.id, clause_id, modifications)
        finally:
            # A failed reanalysis still changes the clause status
            self._sync_clause_data(engine.kind)
        self._apply_session(result.session)
        self._sync_clause_data(engine.kind)
        return engine.get(clause_id)

    @_reported
    def begin_edit(self, clause_id: str, kind: ClauseKind = ClauseKind.MANDATORY) -> Clause:
        engine = self._clause_engine(kind)
        clause = engine.begin_edit(clause_id)
        self._sync_clause_data(engine.kind)
        return clause

    @_reported
    def update_draft(self, clause_id: str, text: str, kind: ClauseKind = ClauseKind.MANDATORY) -> None:
        self._clause_engine(kind).update_draft(clause_id, text)

    @_reported
    def cancel_edit(self, clause_id: str, kind: ClauseKind = ClauseKind.MANDATORY) -> Clause:
        engine = self._clause_engine(kind)
        clause = engine.cancel_edit(clause_id)
        self._sync_clause_data(engine.kind)
        return clause

    @_reported
    async def refresh_clauses(self) -> None:
        """Reload the current step's clauses from the gateway's resume view."""
        session = self._require_real_session()
        step = self.steps.current_step
        if step not in (3, 4):
            return
        data = await self.discipline.call(
            self.policies["read"],
            lambda: self.gateway.resume_data(session.id, step),
            busy_key=f"resume:{step}"
        )
        kind = ClauseKind.MANDATORY if step == 3 else ClauseKind.OPTIONAL
        engine = self.engines[kind]
        engine.load(data.clauses, data.current_clause_index, certified=engine.gateway_certified)
        self._sync_clause_data(kind)

    # Step 4: optional and custom clauses

    @_reported
    async def generate_optional_clauses(self) -> List[Clause]:
        self._ensure_mutable()
        self._require_step(4)
        session = self._require_real_session()
        template_id = self.steps.data_for(2).selected_template_id or session.selected_template_id
        result = await self.discipline.call(
            self.policies["general"],
            lambda: self.gateway.generate_optional_clauses(session.id, template_id),
            busy_key="generate_optional"
        )
        self.engines[ClauseKind.OPTIONAL].load(result.clauses)
        self._apply_session(result.session)
        self._sync_clause_data(ClauseKind.OPTIONAL)
        return list(self.engines[ClauseKind.OPTIONAL].clauses)

    @_reported
    async def generate_custom_clauses(self, specs: List[CustomClauseSpec]) -> List[Clause]:
        self._ensure_mutable()
        self._require_step(4)
        session = self._require_real_session()
        if not specs:
            raise ValidationError("No custom clauses requested", user_message="Add at least one custom clause.")
        for spec in specs:
            if not validate_custom_clause(spec):
                raise ValidationError(
                    "Custom clause needs a title and description",
                    user_message="Each custom clause needs a title and a description."
                )

        result = await self.discipline.call(
            self.policies["general"],
            lambda: self.gateway.generate_custom_clauses(session.id, list(specs)),
            busy_key="generate_custom"
        )
        custom = self.engines[ClauseKind.CUSTOM]
        known = {c.clause_id for c in result.clauses}
        kept = [c for c in custom.clauses if c.clause_id not in known]
        custom.load(kept + list(result.clauses), custom.current_clause_index)
        self._apply_session(result.session)
        self._sync_clause_data(ClauseKind.CUSTOM)
        return list(result.clauses)

    # Step 5: preview and completion

    @_reported
    async def generate_preview(self):
        self._ensure_mutable()
        self._require_step(5)
        session = self._require_real_session()
        result = await self.discipline.call(
            self.policies["general"],
            lambda: self.gateway.generate_preview(session.id),
            busy_key="preview"
        )
        self.steps.set_data(5, msgspec.structs.replace(self.steps.data_for(5), contract_preview=result.preview))
        self._apply_session(result.session)
        return result.preview

    @_reported
    async def complete(self) -> Dict[str, Any]:
        """Sign off the contract once a preview exists."""
        self._ensure_mutable()
        self._require_step(5)
        session = self._require_real_session()
        step5 = self.steps.data_for(5)
        if step5.contract_preview is None or not step5.contract_preview.html_content:
            raise ValidationError(
                "Preview missing",
                user_message="Generate a contract preview before completing."
            )

        review_data = {
            "approved_clause_ids": [
                c.clause_id
                for engine in self.engines.values()
                for c in engine.clauses
                if c.status == ClauseStatus.APPROVED
            ],
            "legal_compliance_score": step5.contract_preview.legal_compliance_score,
        }
        result = await self.discipline.call(
            self.policies["general"],
            lambda: self.gateway.complete_session(session.id, review_data),
            busy_key="complete"
        )

        self._apply_session(result.session)
        self.steps.set_data(5, msgspec.structs.replace(step5, final_contract=result.final_contract))
        self.steps.mark_complete(session.id)
        self._mirror_local_step()
        self._logger.info("Contract completed")
        return result.final_contract


def create_orchestrator(
    gateway=None,
    auth=None,
    store=None,
    party_directory=None,
    base_url: Optional[str] = None,
    token: Optional[str] = None,
    template_threshold: Optional[float] = None
) -> SessionOrchestrator:
    """Factory function to create an orchestrator with environment-based configuration.

    Collaborators that are not passed in talk to the contract generation API
    at ``CONTRACT_API_URL`` using the static ``CONTRACT_API_TOKEN``.

    Args:
        gateway: Optional GenerationGateway
        auth: Optional AuthProvider
        store: Optional SessionStore
        party_directory: Optional PartyDirectory
        base_url: Optional API base URL (uses env var if not provided)
        token: Optional bearer token (uses env var if not provided)
        template_threshold: Optional template threshold (uses env var or default)

    Returns:
        Configured SessionOrchestrator instance
    """
    from api.client import (
        HttpGenerationGateway,
        HttpPartyDirectory,
        HttpSessionStore,
    )
    from api.security import StaticTokenProvider

    if base_url is None:
        base_url = os.getenv("CONTRACT_API_URL", "http://localhost:8000")

    if auth is None:
        auth = StaticTokenProvider(token if token is not None else os.getenv("CONTRACT_API_TOKEN"))

    if template_threshold is None:
        template_threshold = float(os.getenv("TEMPLATE_MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD))

    policies = policies_from_env()
    if gateway is None:
        gateway = HttpGenerationGateway(base_url, timeout=policies["general"].timeout_seconds)
    if party_directory is None:
        party_directory = HttpPartyDirectory(base_url)
    if store is None:
        store = HttpSessionStore(base_url, timeout=policies["general"].timeout_seconds)

    return SessionOrchestrator(
        gateway=gateway,
        auth=auth,
        store=store,
        party_directory=party_directory,
        template_threshold=template_threshold,
        policies=policies
    )
