"""Collaborator interfaces consumed by the session orchestrator.

Implementations live elsewhere: ``drafting.generation_service`` (in-process
gateway), ``api.client`` (HTTP gateway and party directory),
``memory.session_service`` (session store) and ``api.security`` (tokens).
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from drafting.models import (
    AnalysisResult,
    ClauseApprovalResult,
    ClauseBatchResult,
    ClauseUpdateResult,
    CompletionResult,
    CustomClauseSpec,
    MandatoryClausesResult,
    MandatoryFields,
    PartyInfo,
    PreviewResult,
    ResumeData,
    Session,
)


@runtime_checkable
class GenerationGateway(Protocol):
    """AI-backed contract generation operations. Every call may be slow or fail."""

    async def analyze_prompt(self, text: str) -> AnalysisResult: ...

    async def create_session(
        self, template_id: str, prompt: str, analysis: Optional[AnalysisResult]
    ) -> Session: ...

    async def get_session(self, session_id: str) -> Session: ...

    async def generate_mandatory_clauses(
        self,
        session_id: str,
        explanation: str,
        fields: MandatoryFields,
        template_id: str
    ) -> MandatoryClausesResult: ...

    async def approve_clause(
        self,
        session_id: str,
        clause_id: str,
        approved: bool,
        modifications: Optional[str] = None
    ) -> ClauseApprovalResult: ...

    async def reanalyze_clause(
        self, session_id: str, clause_id: str, modifications: str
    ) -> ClauseUpdateResult: ...

    async def generate_optional_clauses(self, session_id: str, template_id: str) -> ClauseBatchResult: ...

    async def generate_custom_clauses(
        self, session_id: str, specs: List[CustomClauseSpec]
    ) -> ClauseBatchResult: ...

    async def generate_preview(self, session_id: str) -> PreviewResult: ...

    async def complete_session(
        self, session_id: str, review_data: Dict[str, Any]
    ) -> CompletionResult: ...

    async def resume_data(self, session_id: str, step: int) -> ResumeData: ...


@runtime_checkable
class PartyDirectory(Protocol):
    async def lookup(self, external_id: str) -> Optional[PartyInfo]: ...


@runtime_checkable
class AuthProvider(Protocol):
    async def current_token(self) -> Optional[str]: ...


@runtime_checkable
class SessionStore(Protocol):
    """Durable keyed storage for session snapshots."""

    def get(self, session_id: str) -> Optional[Session]: ...

    def put(self, session: Session) -> None: ...

    def patch(self, session_id: str, changes: Dict[str, Any]) -> Session: ...
