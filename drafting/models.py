"""
Data Models - msgspec Structs for the contract generation workflow.

These models define the session aggregate, the clause lifecycle records and
the per-step payloads stored in ``Session.session_data``. Using msgspec provides:
- Fast JSON serialization/deserialization of gateway payloads
- Type validation when restoring persisted step data
- Forward compatibility (unknown server fields are ignored)
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import msgspec
from msgspec import Struct

TOTAL_STEPS = 5
PLACEHOLDER_PREFIX = "local_"


class SessionStatus(str, Enum):
    """Lifecycle of a generation session."""
    ANALYZING = "analyzing"
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ClauseStatus(str, Enum):
    """Lifecycle of a single clause."""
    PENDING = "pending"
    AI_GENERATED = "ai_generated"
    REGENERATED = "regenerated"
    REGENERATION_FAILED = "regeneration_failed"
    EDITING = "editing"
    APPROVED = "approved"
    REJECTED = "rejected"


class ClauseKind(str, Enum):
    """Collection a clause belongs to."""
    MANDATORY = "mandatory"
    OPTIONAL = "optional"
    CUSTOM = "custom"


class PartyType(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"
    PARTNERSHIP = "partnership"
    SOLE_PROPRIETORSHIP = "sole_proprietorship"
    NGO = "ngo"
    GOVERNMENT_ENTITY = "government_entity"


def new_placeholder_id() -> str:
    """Mint a local session id used until the server assigns a real one."""
    return f"{PLACEHOLDER_PREFIX}{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def is_placeholder_id(session_id: Optional[str]) -> bool:
    return not session_id or session_id.startswith(PLACEHOLDER_PREFIX)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Clause(Struct, kw_only=True):
    """One legal provision with its approval lifecycle."""
    clause_id: str
    title: str
    content: str = ""
    ai_generated_content: Optional[str] = None
    status: ClauseStatus = ClauseStatus.PENDING
    is_mandatory: bool = False
    order: int = 0
    confidence_score: Optional[float] = None
    legal_references: List[str] = []
    risk_assessment: Optional[str] = None
    description: Optional[str] = None
    user_modifications: Optional[str] = None
    previous_status: Optional[ClauseStatus] = None


class PartyInfo(Struct, kw_only=True):
    """Resolved identity of a contracting party."""
    external_id: str = msgspec.field(name="app_id")
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    party_type: PartyType = PartyType.INDIVIDUAL
    is_verified: bool = False


class MandatoryFields(Struct, kw_only=True):
    """Party identities and contract details collected in step 3."""
    party1: Optional[PartyInfo] = None
    party2: Optional[PartyInfo] = None
    contract_details: Dict[str, str] = {}


class TemplateSuggestion(Struct, kw_only=True):
    """A candidate template returned by prompt analysis."""
    template_id: str
    template_name: str
    contract_type: str = ""
    description: str = ""
    relevance_score: float = 0.0
    explanation: str = ""
    confidence: str = ""
    use_cases: List[str] = []
    matching_keywords: List[str] = []
    estimated_completion_time: Optional[str] = None
    complexity: Optional[str] = None


class AnalysisResult(Struct, kw_only=True):
    """Outcome of the AI prompt analysis (step 1)."""
    can_handle: bool
    suggested_templates: List[TemplateSuggestion] = []
    reasoning: str = ""
    keywords: List[str] = msgspec.field(default_factory=list, name="extracted_keywords")
    confidence_score: Optional[float] = None
    unsupported_message: Optional[str] = None
    user_prompt: str = ""
    ai_analysis_timestamp: Optional[datetime] = None


class CustomClauseSpec(Struct, kw_only=True):
    """User-authored clause request for step 4."""
    title: str
    description: str


class ContractPreview(Struct, kw_only=True):
    """Rendered contract returned before completion (step 5)."""
    html_content: str = ""
    final_contract_text: str = ""
    legal_compliance_score: float = 0.0
    legal_compliance: bool = False
    risk_assessment: Dict[str, Any] = {}


class Session(Struct, kw_only=True):
    """Aggregate root tracking one contract generation attempt."""
    id: str
    user_id: Optional[str] = None
    current_step: int = 1
    total_steps: int = TOTAL_STEPS
    session_status: SessionStatus = SessionStatus.ANALYZING
    completion_percentage: float = 0.0
    selected_template_id: Optional[str] = None
    contract_type: Optional[str] = None
    initial_user_prompt: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    session_data: Dict[str, Any] = {}

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    @property
    def is_terminal(self) -> bool:
        return self.session_status in (SessionStatus.COMPLETED, SessionStatus.ABANDONED)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True when the session passed ``expires_at`` without completing."""
        if self.expires_at is None or self.session_status == SessionStatus.COMPLETED:
            return False
        return as_utc(self.expires_at) <= as_utc(now or utc_now())


# Step payloads stored in Session.session_data

class Step1Data(Struct, kw_only=True):
    user_prompt: str = ""
    ai_analysis: Optional[AnalysisResult] = None


class Step2Data(Struct, kw_only=True):
    selected_template_id: Optional[str] = None
    available_templates: List[TemplateSuggestion] = []


class Step3Data(Struct, kw_only=True):
    user_explanation: str = ""
    mandatory_fields: MandatoryFields = msgspec.field(default_factory=MandatoryFields)
    generated_clauses: List[Clause] = []
    current_clause_index: int = 0
    step3_completed: bool = False


class Step4Data(Struct, kw_only=True):
    optional_clauses: List[Clause] = []
    custom_clauses: List[Clause] = []
    selected_optional_clauses: List[str] = []
    current_clause_index: int = 0


class Step5Data(Struct, kw_only=True):
    contract_preview: Optional[ContractPreview] = None
    final_contract: Optional[Dict[str, Any]] = None


STEP_DATA_TYPES = {
    1: Step1Data,
    2: Step2Data,
    3: Step3Data,
    4: Step4Data,
    5: Step5Data,
}


# Gateway results

class MandatoryClausesResult(Struct, kw_only=True):
    clauses: List[Clause] = msgspec.field(default_factory=list, name="generated_clauses")
    session: Optional[Session] = msgspec.field(default=None, name="contract_session")


class ClauseApprovalResult(Struct, kw_only=True):
    clause: Clause = msgspec.field(name="updated_clause")
    session: Optional[Session] = msgspec.field(default=None, name="contract_session")
    step3_completed: bool = False


class ClauseUpdateResult(Struct, kw_only=True):
    clause: Clause = msgspec.field(name="updated_clause")
    session: Optional[Session] = msgspec.field(default=None, name="contract_session")


class ClauseBatchResult(Struct, kw_only=True):
    clauses: List[Clause] = []
    session: Optional[Session] = msgspec.field(default=None, name="contract_session")


class PreviewResult(Struct, kw_only=True):
    preview: ContractPreview = msgspec.field(name="contract_preview")
    session: Optional[Session] = msgspec.field(default=None, name="contract_session")


class CompletionResult(Struct, kw_only=True):
    session: Session = msgspec.field(name="contract_session")
    final_contract: Dict[str, Any] = {}


class ResumeData(Struct, kw_only=True):
    """Server-side view used to restore a clause review step."""
    clauses: List[Clause] = []
    current_clause_index: int = 0
    completed_clauses: int = 0
    total_clauses: int = 0
    can_proceed: bool = False
