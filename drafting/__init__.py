"""AI Contract Generation - session orchestration package."""

from drafting.models import (
    Clause,
    ClauseKind,
    ClauseStatus,
    PartyInfo,
    MandatoryFields,
    TemplateSuggestion,
    AnalysisResult,
    CustomClauseSpec,
    ContractPreview,
    Session,
    SessionStatus,
)

from drafting.logging_config import (
    setup_logging,
    get_session_logger,
    log_agent_execution,
    log_gateway_call,
)

from drafting.error_handling import (
    ContractDraftingError,
    ValidationError,
    ConflictError,
    RequestInFlightError,
    UnauthenticatedError,
    TransientError,
    RequestTimeoutError,
    NetworkError,
    GatewayError,
    NotFoundError,
    SessionError,
    AgentError,
    LLMError,
    ErrorNotice,
)

from drafting.clause_engine import ClauseApprovalEngine
from drafting.request_discipline import RequestDiscipline, CallPolicy
from drafting.step_controller import StepController

from drafting.orchestrator import (
    SessionOrchestrator,
    create_orchestrator,
)

__version__ = "0.1.0"

__all__ = [
    # Models
    "Clause",
    "ClauseKind",
    "ClauseStatus",
    "PartyInfo",
    "MandatoryFields",
    "TemplateSuggestion",
    "AnalysisResult",
    "CustomClauseSpec",
    "ContractPreview",
    "Session",
    "SessionStatus",
    # Logging
    "setup_logging",
    "get_session_logger",
    "log_agent_execution",
    "log_gateway_call",
    # Error Handling
    "ContractDraftingError",
    "ValidationError",
    "ConflictError",
    "RequestInFlightError",
    "UnauthenticatedError",
    "TransientError",
    "RequestTimeoutError",
    "NetworkError",
    "GatewayError",
    "NotFoundError",
    "SessionError",
    "AgentError",
    "LLMError",
    "ErrorNotice",
    # Core
    "ClauseApprovalEngine",
    "RequestDiscipline",
    "CallPolicy",
    "StepController",
    # Orchestrator
    "SessionOrchestrator",
    "create_orchestrator",
]
