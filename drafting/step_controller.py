"""Step progression for the five-step contract generation workflow.

The controller owns the current step index and the working payload of every
step. Completion predicates are re-checked here regardless of what the caller
already validated, and persisted snapshots are restored with the
server-reported step as ground truth.
"""

from typing import Any, Dict, Iterable, List, Optional

import msgspec
from loguru import logger

from drafting import clause_state
from drafting.error_handling import ValidationError
from drafting.logging_config import get_session_logger
from drafting.models import (
    STEP_DATA_TYPES,
    TOTAL_STEPS,
    ClauseStatus,
    Session,
    SessionStatus,
    Step1Data,
    Step2Data,
    Step3Data,
    Step4Data,
    Step5Data,
)
from tools.text_metrics import step_progress, validate_prompt

STEP_DATA_KEYS = {n: f"step{n}_data" for n in range(1, TOTAL_STEPS + 1)}


class ResumeResult(msgspec.Struct, kw_only=True):
    """Outcome of restoring a persisted session."""
    session: Session
    current_step: int
    step_data: Dict[int, Any]
    is_complete: bool = False
    anomalies: List[str] = []


def encode_step_data(data: msgspec.Struct) -> Dict[str, Any]:
    return msgspec.to_builtins(data)


def decode_step_data(step: int, raw: Any) -> msgspec.Struct:
    return msgspec.convert(raw, type=STEP_DATA_TYPES[step])


class StepCompletion(msgspec.Struct, kw_only=True):
    """A validated step completion that has not been applied yet."""
    step: int
    data: Any
    next_step: int
    finishing: bool = False

    def changes(self, total_steps: int = TOTAL_STEPS) -> Dict[str, Any]:
        """SessionStore patch recording this completion."""
        return {
            "session_data": {STEP_DATA_KEYS[self.step]: encode_step_data(self.data)},
            "current_step": self.next_step,
            "completion_percentage": 100 if self.finishing else step_progress(self.next_step, total_steps),
            "session_status": (SessionStatus.COMPLETED if self.finishing else SessionStatus.ACTIVE).value,
        }


class StepController:
    """State machine over steps 1..5.

    The controller never touches storage. ``prepare_completion`` validates a
    step and ``commit`` applies it, so a caller can persist in between and
    leave local state untouched when persisting fails.

    Args:
        total_steps: Number of steps in the workflow
    """

    def __init__(self, total_steps: int = TOTAL_STEPS):
        self.total_steps = total_steps
        self.current_step = 1
        self.is_complete = False
        self.step_data: Dict[int, msgspec.Struct] = self._empty_step_data()
        # Highest step a server response may move us to after going back
        self._ceiling: Optional[int] = None

    def _empty_step_data(self) -> Dict[int, msgspec.Struct]:
        return {n: STEP_DATA_TYPES[n]() for n in range(1, self.total_steps + 1)}

    def reset(self) -> None:
        self.current_step = 1
        self.is_complete = False
        self.step_data = self._empty_step_data()
        self._ceiling = None

    @property
    def completion_percentage(self) -> int:
        if self.is_complete:
            return 100
        return step_progress(self.current_step, self.total_steps)

    def data_for(self, step: int) -> msgspec.Struct:
        return self.step_data[step]

    def set_data(self, step: int, data: Any) -> msgspec.Struct:
        if isinstance(data, dict):
            data = decode_step_data(step, data)
        self.step_data[step] = data
        return data

    # Completion

    def complete_step(
        self,
        n: int,
        data: Any = None,
        *,
        session: Optional[Session] = None,
        mandatory_engine=None,
        optional_engines: Iterable = ()
    ) -> int:
        """Validate step ``n`` and advance to ``n + 1``.

        Completing the last step marks the workflow complete instead of
        advancing.

        Returns:
            The step index after completion

        Raises:
            ValidationError: ``n`` is not the current step or its predicate fails
        """
        completion = self.prepare_completion(
            n,
            data,
            session=session,
            mandatory_engine=mandatory_engine,
            optional_engines=optional_engines
        )
        return self.commit(completion, session_id=session.id if session else None)

    def prepare_completion(
        self,
        n: int,
        data: Any = None,
        *,
        session: Optional[Session] = None,
        mandatory_engine=None,
        optional_engines: Iterable = ()
    ) -> StepCompletion:
        """Check that step ``n`` can complete without changing any state."""
        if self.is_complete:
            raise ValidationError(
                "Workflow already completed",
                user_message="This contract has already been completed."
            )
        if n != self.current_step:
            raise ValidationError(
                f"Cannot complete step {n} while on step {self.current_step}",
                user_message="Please finish the current step first."
            )

        data = self.step_data[n] if data is None else data
        if isinstance(data, dict):
            data = decode_step_data(n, data)

        error = self._predicate_error(n, data, session, mandatory_engine, list(optional_engines))
        if error:
            raise ValidationError(f"Step {n} incomplete: {error}", user_message=error)

        finishing = n >= self.total_steps
        return StepCompletion(step=n, data=data, next_step=n if finishing else n + 1, finishing=finishing)

    def commit(self, completion: StepCompletion, session_id: Optional[str] = None) -> int:
        """Apply a completion returned by ``prepare_completion``."""
        if completion.step != self.current_step or self.is_complete:
            raise ValidationError(
                f"Stale completion for step {completion.step}, controller is on step {self.current_step}"
            )
        self.step_data[completion.step] = completion.data
        self.current_step = completion.next_step
        self.is_complete = completion.finishing
        if self._ceiling is not None:
            self._ceiling = max(self._ceiling, completion.next_step)

        get_session_logger(session_id, "StepController").info(
            "Step completed", step=completion.step, current_step=self.current_step, is_complete=self.is_complete
        )
        return self.current_step

    def mark_complete(self, session_id: Optional[str] = None) -> None:
        """Record a completion the gateway already confirmed."""
        self.current_step = self.total_steps
        self.is_complete = True
        get_session_logger(session_id, "StepController").info("Workflow marked complete")

    def can_complete(self, n: int, **kwargs) -> bool:
        if self.is_complete or n != self.current_step:
            return False
        data = kwargs.pop("data", None)
        data = self.step_data[n] if data is None else data
        return self._predicate_error(
            n, data, kwargs.get("session"), kwargs.get("mandatory_engine"),
            list(kwargs.get("optional_engines", ()))
        ) is None

    def _predicate_error(self, n, data, session, mandatory_engine, optional_engines) -> Optional[str]:
        if n == 1:
            return self._step1_error(data)
        if n == 2:
            return self._step2_error(data, session)
        if n == 3:
            return self._step3_error(data, mandatory_engine)
        if n == 4:
            return self._step4_error(data, optional_engines)
        return self._step5_error(data)

    def _step1_error(self, data: Step1Data) -> Optional[str]:
        ok, error = validate_prompt(data.user_prompt)
        if not ok:
            return error
        if data.ai_analysis is None:
            return "Please analyze your request first."
        if not data.ai_analysis.can_handle:
            return data.ai_analysis.unsupported_message or "This request cannot be handled."
        return None

    def _step2_error(self, data: Step2Data, session: Optional[Session]) -> Optional[str]:
        if not data.selected_template_id:
            return "Please select a template."
        candidates = {t.template_id for t in data.available_templates}
        if candidates and data.selected_template_id not in candidates:
            return "Please select a template from the suggested list."
        if session is None or session.is_placeholder:
            return "A session must be created from the selected template."
        return None

    def _step3_error(self, data: Step3Data, mandatory_engine) -> Optional[str]:
        if mandatory_engine is not None:
            satisfied = mandatory_engine.all_processed() or data.step3_completed
        else:
            clauses = data.generated_clauses
            satisfied = data.step3_completed or (
                bool(clauses) and all(c.status == ClauseStatus.APPROVED for c in clauses)
            )
        if not satisfied:
            return "All mandatory clauses must be approved before continuing."
        return None

    def _step4_error(self, data: Step4Data, optional_engines: list) -> Optional[str]:
        if optional_engines:
            satisfied = all(engine.all_processed() for engine in optional_engines)
        else:
            satisfied = all(
                clause_state.is_terminal(c) for c in data.optional_clauses + data.custom_clauses
            )
        if not satisfied:
            return "Approve or reject every optional and custom clause before continuing."
        return None

    def _step5_error(self, data: Step5Data) -> Optional[str]:
        if data.contract_preview is None or not data.contract_preview.html_content:
            return "Generate a contract preview before completing."
        return None

    # Navigation

    def go_back(self) -> int:
        """Step back one step locally. No-op on step 1 or once complete.

        Until the user completes steps again, server responses cannot carry
        the controller past the step it went back to.
        """
        if not self.is_complete and self.current_step > 1:
            self.current_step -= 1
            self._ceiling = self.current_step
        return self.current_step

    def resume(self, snapshot: Session) -> ResumeResult:
        """Rebuild step state from a persisted session.

        The snapshot's step overrides any locally cached step. Step payloads
        are decoded independently; a missing or undecodable payload falls
        back to that step's empty default.
        """
        session_logger = get_session_logger(snapshot.id, "StepController")
        anomalies: List[str] = []

        if snapshot.is_placeholder:
            anomalies.append(f"snapshot carries placeholder id {snapshot.id}")

        step = snapshot.current_step
        if not 1 <= step <= self.total_steps:
            anomalies.append(f"current_step {step} out of range")
            step = min(max(step, 1), self.total_steps)

        session_data = snapshot.session_data or {}
        step_data = self._empty_step_data()
        for n, key in STEP_DATA_KEYS.items():
            raw = session_data.get(key)
            if raw is None:
                continue
            try:
                step_data[n] = decode_step_data(n, raw)
            except msgspec.ValidationError as e:
                anomalies.append(f"{key} could not be decoded: {e}")

        for n, clauses in ((3, step_data[3].generated_clauses),
                           (4, step_data[4].optional_clauses)):
            cursor = step_data[n].current_clause_index
            if cursor < 0 or (clauses and cursor >= len(clauses)) or (not clauses and cursor != 0):
                anomalies.append(f"step {n} clause cursor {cursor} out of range")
                step_data[n] = msgspec.structs.replace(
                    step_data[n],
                    current_clause_index=min(max(cursor, 0), max(len(clauses) - 1, 0))
                )

        for anomaly in anomalies:
            session_logger.warning("Resume anomaly", anomaly=anomaly)

        self.current_step = step
        self.step_data = step_data
        self.is_complete = snapshot.session_status == SessionStatus.COMPLETED
        self._ceiling = None

        return ResumeResult(
            session=snapshot,
            current_step=step,
            step_data=step_data,
            is_complete=self.is_complete,
            anomalies=anomalies
        )

    def reconcile(self, session: Session) -> int:
        """Fold a server response into the step index without moving backwards."""
        server_step = session.current_step
        if not 1 <= server_step <= self.total_steps:
            logger.warning(
                "Ignoring out-of-range step from server",
                session_id=session.id,
                server_step=server_step
            )
        elif server_step > self.current_step:
            target = server_step if self._ceiling is None else min(server_step, self._ceiling)
            if target < server_step:
                logger.debug(
                    "Holding step after backward navigation",
                    session_id=session.id,
                    server_step=server_step,
                    current_step=self.current_step
                )
            self.current_step = max(self.current_step, target)
        if session.session_status == SessionStatus.COMPLETED:
            self.is_complete = True
        return self.current_step
