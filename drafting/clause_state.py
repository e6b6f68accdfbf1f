"""Clause lifecycle rules.

Every action the user can take on a clause is checked here before any
gateway call is made. The helpers return new ``Clause`` instances and never
mutate the one they are given.
"""

from enum import Enum
from typing import Optional, Set

import msgspec

from drafting.error_handling import ConflictError
from drafting.models import Clause, ClauseStatus


class ClauseAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"
    CANCEL_EDIT = "cancel_edit"
    REANALYZE = "reanalyze"


MANDATORY_REJECT_MESSAGE = (
    "Mandatory clauses cannot be rejected. Edit the clause and request "
    "a reanalysis instead."
)

_TRANSITIONS = {
    ClauseStatus.PENDING: {ClauseAction.APPROVE, ClauseAction.REJECT, ClauseAction.EDIT},
    ClauseStatus.AI_GENERATED: {ClauseAction.APPROVE, ClauseAction.REJECT, ClauseAction.EDIT},
    ClauseStatus.REGENERATED: {ClauseAction.APPROVE, ClauseAction.REJECT, ClauseAction.EDIT},
    ClauseStatus.REGENERATION_FAILED: {
        ClauseAction.APPROVE, ClauseAction.REJECT, ClauseAction.EDIT, ClauseAction.REANALYZE,
    },
    ClauseStatus.EDITING: {
        ClauseAction.APPROVE, ClauseAction.REJECT, ClauseAction.CANCEL_EDIT, ClauseAction.REANALYZE,
    },
    ClauseStatus.APPROVED: {ClauseAction.EDIT},
    ClauseStatus.REJECTED: {ClauseAction.APPROVE},
}


def is_rejectable(clause: Clause) -> bool:
    return not clause.is_mandatory


def is_terminal(clause: Clause) -> bool:
    """Approved, or rejected for a clause that may be rejected."""
    if clause.status == ClauseStatus.APPROVED:
        return True
    return clause.status == ClauseStatus.REJECTED and is_rejectable(clause)


def allowed_actions(clause: Clause) -> Set[ClauseAction]:
    actions = set(_TRANSITIONS.get(clause.status, ()))
    if not is_rejectable(clause):
        actions.discard(ClauseAction.REJECT)
    return actions


def check_transition(clause: Clause, action: ClauseAction) -> None:
    """Raise ConflictError when ``action`` is not allowed for ``clause``."""
    if action == ClauseAction.REJECT and not is_rejectable(clause):
        raise ConflictError(
            f"Reject refused for mandatory clause {clause.clause_id}",
            user_message=MANDATORY_REJECT_MESSAGE
        )
    if action not in allowed_actions(clause):
        status = clause.status.value if isinstance(clause.status, ClauseStatus) else clause.status
        raise ConflictError(
            f"Action {action.value} not allowed for clause {clause.clause_id} in status {status}",
            user_message=f"This clause cannot be {_describe(action)} while it is {status.replace('_', ' ')}."
        )


def _describe(action: ClauseAction) -> str:
    return {
        ClauseAction.APPROVE: "approved",
        ClauseAction.REJECT: "rejected",
        ClauseAction.EDIT: "edited",
        ClauseAction.CANCEL_EDIT: "reverted",
        ClauseAction.REANALYZE: "reanalyzed",
    }[action]


def begin_edit(clause: Clause) -> Clause:
    check_transition(clause, ClauseAction.EDIT)
    return msgspec.structs.replace(
        clause,
        status=ClauseStatus.EDITING,
        previous_status=clause.status
    )


def cancel_edit(clause: Clause) -> Clause:
    check_transition(clause, ClauseAction.CANCEL_EDIT)
    previous: Optional[ClauseStatus] = clause.previous_status or ClauseStatus.PENDING
    return msgspec.structs.replace(clause, status=previous, previous_status=None)


def mark_regeneration_failed(clause: Clause) -> Clause:
    return msgspec.structs.replace(
        clause,
        status=ClauseStatus.REGENERATION_FAILED,
        previous_status=None
    )
