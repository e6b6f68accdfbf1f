"""
Generation Service - in-process GenerationGateway backed by the agents.

Serves the FastAPI routes and can be handed directly to a SessionOrchestrator.
Sessions live in a SessionStore; clause collections are kept in the step
payloads (``step3_data`` / ``step4_data``) of ``Session.session_data``.

The service never moves ``current_step``: step progression belongs to the
client's StepController, which persists it through the same store.
"""

import asyncio
import os
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import msgspec
from loguru import logger

from drafting import clause_state
from drafting.agents import (
    ClauseDraftingAgent,
    ContractAssemblyAgent,
    PromptAnalysisAgent,
    custom_clause_definitions,
    heuristic_review,
    keyword_analysis,
    template_clauses,
    template_redraft,
)
from drafting.agents.base import DEFAULT_MODEL
from drafting.agents.contract_assembly_agent import disclaimer
from drafting.error_handling import (
    AgentError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from drafting.logging_config import get_session_logger, log_gateway_call
from drafting.models import (
    AnalysisResult,
    Clause,
    ClauseApprovalResult,
    ClauseBatchResult,
    ClauseStatus,
    ClauseUpdateResult,
    CompletionResult,
    ContractPreview,
    CustomClauseSpec,
    MandatoryClausesResult,
    MandatoryFields,
    PartyInfo,
    PreviewResult,
    ResumeData,
    Session,
    SessionStatus,
    Step1Data,
    Step2Data,
    Step3Data,
    Step4Data,
    utc_now,
)
from drafting.step_controller import STEP_DATA_KEYS, decode_step_data, encode_step_data
from tools.contract_renderer import approved_clauses, render_contract_html, render_contract_text
from tools.template_catalog import TemplateCatalog
from tools.text_metrics import (
    compliance_label,
    contract_file_name,
    step_progress,
    validate_custom_clause,
    validate_prompt,
    validate_step3_inputs,
)

DEFAULT_SESSION_TTL_HOURS = 24


class GenerationService:
    """
    Server-side implementation of every GenerationGateway operation.

    Agents are optional: without them each operation uses the deterministic
    catalog logic (keyword scoring, template wording, heuristic review).

    Args:
        store: SessionStore holding the sessions
        catalog: Template catalog (default catalog when omitted)
        party_registry: Optional PartyRegistry used by ``lookup_party``
        prompt_agent: Optional PromptAnalysisAgent
        drafting_agent: Optional ClauseDraftingAgent
        assembly_agent: Optional ContractAssemblyAgent
        ttl_hours: Lifetime of a new session
        clock: Callable returning the current UTC datetime
    """

    def __init__(
        self,
        store,
        catalog: Optional[TemplateCatalog] = None,
        party_registry=None,
        prompt_agent: Optional[PromptAnalysisAgent] = None,
        drafting_agent: Optional[ClauseDraftingAgent] = None,
        assembly_agent: Optional[ContractAssemblyAgent] = None,
        ttl_hours: float = DEFAULT_SESSION_TTL_HOURS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.catalog = catalog or TemplateCatalog()
        self.party_registry = party_registry
        self.prompt_agent = prompt_agent
        self.drafting_agent = drafting_agent
        self.assembly_agent = assembly_agent
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock or utc_now

        logger.info(
            "GenerationService initialized",
            ai_enabled=prompt_agent is not None,
            ttl_hours=ttl_hours,
            template_count=len(self.catalog.template_ids())
        )

    # Session helpers

    def _load(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        if session.session_status != SessionStatus.ABANDONED and session.is_expired(self._clock()):
            get_session_logger(session_id, "GenerationService").warning("Session expired, marking abandoned")
            session = self.store.patch(session_id, {"session_status": SessionStatus.ABANDONED.value})
            self._log_event(session_id, "session_abandoned", {"reason": "expired"})
        return session

    def _load_active(self, session_id: str) -> Session:
        session = self._load(session_id)
        if session.session_status == SessionStatus.ABANDONED:
            raise ValidationError(
                f"Session {session_id} is abandoned",
                user_message="This session has expired. Please start a new contract."
            )
        if session.session_status == SessionStatus.COMPLETED:
            raise ValidationError(
                f"Session {session_id} is completed",
                user_message="This contract has already been completed."
            )
        return session

    @staticmethod
    def _step(session: Session, n: int) -> msgspec.Struct:
        raw = (session.session_data or {}).get(STEP_DATA_KEYS[n])
        if raw is None:
            return decode_step_data(n, {})
        try:
            return decode_step_data(n, raw)
        except msgspec.ValidationError as e:
            get_session_logger(session.id, "GenerationService").warning(
                "Stored step payload could not be decoded", step=n, error=str(e)
            )
            return decode_step_data(n, {})

    def _save(self, session_id: str, steps: Dict[int, msgspec.Struct], **fields) -> Session:
        changes: Dict[str, Any] = {
            "session_data": {STEP_DATA_KEYS[n]: encode_step_data(data) for n, data in steps.items()}
        }
        changes.update(fields)
        return self.store.patch(session_id, changes)

    def _log_event(self, session_id: str, event_type: str, event_data: Dict[str, Any]) -> None:
        log_event = getattr(self.store, "log_event", None)
        if log_event is not None:
            log_event(session_id, event_type, event_data)

    def _template_or_error(self, template_id: Optional[str]) -> Dict:
        template = self.catalog.get_template(template_id) if template_id else None
        if template is None:
            raise ValidationError(
                f"Unknown template {template_id}",
                user_message="Please select a valid contract template."
            )
        return template

    @staticmethod
    def _find_clause(step3: Step3Data, step4: Step4Data, clause_id: str) -> Tuple[str, int, Clause]:
        for collection, clauses in (("generated_clauses", step3.generated_clauses),
                                    ("optional_clauses", step4.optional_clauses),
                                    ("custom_clauses", step4.custom_clauses)):
            for index, clause in enumerate(clauses):
                if clause.clause_id == clause_id:
                    return collection, index, clause
        raise NotFoundError(f"Clause {clause_id} not found", user_message="Clause not found.")

    @staticmethod
    def _replace_clause(step3: Step3Data, step4: Step4Data, collection: str, index: int, clause: Clause):
        if collection == "generated_clauses":
            clauses = list(step3.generated_clauses)
            clauses[index] = clause
            return msgspec.structs.replace(
                step3,
                generated_clauses=clauses,
                step3_completed=bool(clauses) and all(c.status == ClauseStatus.APPROVED for c in clauses)
            ), step4
        clauses = list(getattr(step4, collection))
        clauses[index] = clause
        step4 = msgspec.structs.replace(step4, **{collection: clauses})
        return step3, msgspec.structs.replace(
            step4,
            selected_optional_clauses=[c.clause_id for c in step4.optional_clauses if c.status == ClauseStatus.APPROVED]
        )

    @staticmethod
    def _require_mandatory_approved(session_id: str, step3: Step3Data) -> None:
        clauses = step3.generated_clauses
        if not clauses:
            raise ValidationError(
                "No mandatory clauses generated",
                user_message="Generate and approve the mandatory clauses first."
            )
        pending = [c.clause_id for c in clauses if c.status != ClauseStatus.APPROVED]
        if pending:
            get_session_logger(session_id, "GenerationService").warning(
                "Mandatory clauses not approved", pending=pending
            )
            raise ValidationError(
                f"Mandatory clauses not approved: {pending}",
                user_message="All mandatory clauses must be approved before continuing."
            )

    # Step 1

    def _analyze_prompt(self, text: str) -> AnalysisResult:
        ok, error = validate_prompt(text)
        if not ok:
            raise ValidationError(error, user_message=error)
        prompt = text.strip()
        if self.prompt_agent is not None:
            return self.prompt_agent.analyze(prompt, session_id="analysis")
        return keyword_analysis(self.catalog, prompt)

    @log_gateway_call("analyze_prompt", session_scoped=False)
    async def analyze_prompt(self, text: str) -> AnalysisResult:
        return await asyncio.to_thread(self._analyze_prompt, text)

    # Step 2

    def _create_session(
        self,
        template_id: str,
        prompt: str,
        analysis: Optional[AnalysisResult],
        user_id: Optional[str] = None
    ) -> Session:
        template = self._template_or_error(template_id)
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            current_step=2,
            session_status=SessionStatus.ACTIVE,
            completion_percentage=float(step_progress(2)),
            selected_template_id=template_id,
            contract_type=template.get("contract_type"),
            initial_user_prompt=prompt,
            created_at=now,
            updated_at=now,
            last_activity_at=now,
            expires_at=now + self.ttl,
            session_data={
                STEP_DATA_KEYS[1]: encode_step_data(Step1Data(user_prompt=prompt, ai_analysis=analysis)),
                STEP_DATA_KEYS[2]: encode_step_data(Step2Data(
                    selected_template_id=template_id,
                    available_templates=list(analysis.suggested_templates) if analysis else []
                )),
            }
        )
        self.store.put(session)
        self._log_event(session.id, "session_created", {"template_id": template_id, "user_id": user_id})
        get_session_logger(session.id, "GenerationService").info("Session created", template_id=template_id)
        return session

    @log_gateway_call("create_session", session_scoped=False)
    async def create_session(
        self,
        template_id: str,
        prompt: str,
        analysis: Optional[AnalysisResult],
        user_id: Optional[str] = None
    ) -> Session:
        return await asyncio.to_thread(self._create_session, template_id, prompt, analysis, user_id)

    @log_gateway_call("get_session")
    async def get_session(self, session_id: str) -> Session:
        return await asyncio.to_thread(self._load, session_id)

    # Step 3

    def _generate_mandatory_clauses(
        self,
        session_id: str,
        explanation: str,
        fields: MandatoryFields,
        template_id: Optional[str]
    ) -> MandatoryClausesResult:
        session = self._load_active(session_id)
        ok, error = validate_step3_inputs(explanation, fields)
        if not ok:
            raise ValidationError(error, user_message=error)
        template_id = template_id or session.selected_template_id
        self._template_or_error(template_id)

        definitions = self.catalog.mandatory_clauses(template_id)
        if self.drafting_agent is not None:
            clauses = self.drafting_agent.draft(
                definitions, True, fields, explanation, 0, session_id=session_id
            )
        else:
            clauses = template_clauses(definitions, True, fields, explanation)

        step3 = msgspec.structs.replace(
            self._step(session, 3),
            user_explanation=explanation,
            mandatory_fields=fields,
            generated_clauses=clauses,
            current_clause_index=0,
            step3_completed=False
        )
        session = self._save(session_id, {3: step3})
        self._log_event(session_id, "mandatory_clauses_generated", {"clause_count": len(clauses)})
        return MandatoryClausesResult(clauses=clauses, session=session)

    @log_gateway_call("generate_mandatory_clauses")
    async def generate_mandatory_clauses(
        self,
        session_id: str,
        explanation: str,
        fields: MandatoryFields,
        template_id: Optional[str]
    ) -> MandatoryClausesResult:
        return await asyncio.to_thread(
            self._generate_mandatory_clauses, session_id, explanation, fields, template_id
        )

    # Clause actions

    def _approve_clause(
        self,
        session_id: str,
        clause_id: str,
        approved: bool,
        modifications: Optional[str] = None
    ) -> ClauseApprovalResult:
        session = self._load_active(session_id)
        step3, step4 = self._step(session, 3), self._step(session, 4)
        collection, index, clause = self._find_clause(step3, step4, clause_id)
        session_logger = get_session_logger(session_id, "GenerationService")

        if not approved:
            if not clause_state.is_rejectable(clause):
                session_logger.warning("Refused rejection of mandatory clause", clause_id=clause_id)
                raise ConflictError(
                    f"Clause {clause_id} is mandatory",
                    user_message=clause_state.MANDATORY_REJECT_MESSAGE
                )
            updated = msgspec.structs.replace(clause, status=ClauseStatus.REJECTED, previous_status=None)
        else:
            modifications = (modifications or "").strip() or None
            updated = msgspec.structs.replace(
                clause,
                status=ClauseStatus.APPROVED,
                content=modifications or clause.content,
                user_modifications=modifications or clause.user_modifications,
                previous_status=None
            )

        step3, step4 = self._replace_clause(step3, step4, collection, index, updated)
        session = self._save(session_id, {3: step3, 4: step4})
        self._log_event(session_id, "clause_approved" if approved else "clause_rejected", {"clause_id": clause_id})
        session_logger.info(
            "Clause decision recorded",
            clause_id=clause_id,
            approved=approved,
            step3_completed=step3.step3_completed
        )
        return ClauseApprovalResult(clause=updated, session=session, step3_completed=step3.step3_completed)

    @log_gateway_call("approve_clause")
    async def approve_clause(
        self,
        session_id: str,
        clause_id: str,
        approved: bool,
        modifications: Optional[str] = None
    ) -> ClauseApprovalResult:
        return await asyncio.to_thread(self._approve_clause, session_id, clause_id, approved, modifications)

    def _reanalyze_clause(self, session_id: str, clause_id: str, modifications: str) -> ClauseUpdateResult:
        if not modifications or not modifications.strip():
            raise ValidationError(
                "Reanalysis needs modifications",
                user_message="Describe the changes you want before requesting a reanalysis."
            )
        session = self._load_active(session_id)
        step3, step4 = self._step(session, 3), self._step(session, 4)
        collection, index, clause = self._find_clause(step3, step4, clause_id)

        if self.drafting_agent is not None:
            updated = self.drafting_agent.redraft(
                clause, modifications.strip(), step3.mandatory_fields, step3.user_explanation,
                session_id=session_id
            )
        else:
            updated = template_redraft(clause, modifications.strip(), step3.mandatory_fields, step3.user_explanation)

        step3, step4 = self._replace_clause(step3, step4, collection, index, updated)
        session = self._save(session_id, {3: step3, 4: step4})
        self._log_event(session_id, "clause_reanalyzed", {"clause_id": clause_id})
        return ClauseUpdateResult(clause=updated, session=session)

    @log_gateway_call("reanalyze_clause")
    async def reanalyze_clause(self, session_id: str, clause_id: str, modifications: str) -> ClauseUpdateResult:
        return await asyncio.to_thread(self._reanalyze_clause, session_id, clause_id, modifications)

    # Step 4

    def _draft(self, session_id: str, definitions: List[Dict], step3: Step3Data, start_order: int) -> List[Clause]:
        if self.drafting_agent is not None:
            return self.drafting_agent.draft(
                definitions, False, step3.mandatory_fields, step3.user_explanation, start_order,
                session_id=session_id
            )
        return template_clauses(definitions, False, step3.mandatory_fields, step3.user_explanation, start_order)

    def _generate_optional_clauses(self, session_id: str, template_id: Optional[str]) -> ClauseBatchResult:
        session = self._load_active(session_id)
        template_id = template_id or session.selected_template_id
        self._template_or_error(template_id)
        step3, step4 = self._step(session, 3), self._step(session, 4)

        clauses = self._draft(session_id, self.catalog.optional_clauses(template_id), step3, 0)
        step4 = msgspec.structs.replace(
            step4, optional_clauses=clauses, selected_optional_clauses=[], current_clause_index=0
        )
        session = self._save(session_id, {4: step4})
        self._log_event(session_id, "optional_clauses_generated", {"clause_count": len(clauses)})
        return ClauseBatchResult(clauses=clauses, session=session)

    @log_gateway_call("generate_optional_clauses")
    async def generate_optional_clauses(self, session_id: str, template_id: Optional[str] = None) -> ClauseBatchResult:
        return await asyncio.to_thread(self._generate_optional_clauses, session_id, template_id)

    def _generate_custom_clauses(self, session_id: str, specs: List[CustomClauseSpec]) -> ClauseBatchResult:
        if not specs:
            raise ValidationError("No custom clauses requested", user_message="Add at least one custom clause.")
        for spec in specs:
            if not validate_custom_clause(spec):
                raise ValidationError(
                    "Custom clause needs a title and description",
                    user_message="Each custom clause needs a title and a description."
                )
        session = self._load_active(session_id)
        step3, step4 = self._step(session, 3), self._step(session, 4)

        existing = list(step4.custom_clauses)
        definitions = custom_clause_definitions(specs, start_index=len(existing))
        clauses = self._draft(session_id, definitions, step3, len(existing))
        step4 = msgspec.structs.replace(step4, custom_clauses=existing + clauses)
        session = self._save(session_id, {4: step4})
        self._log_event(session_id, "custom_clauses_generated", {"clause_count": len(clauses)})
        return ClauseBatchResult(clauses=clauses, session=session)

    @log_gateway_call("generate_custom_clauses")
    async def generate_custom_clauses(self, session_id: str, specs: List[CustomClauseSpec]) -> ClauseBatchResult:
        return await asyncio.to_thread(self._generate_custom_clauses, session_id, list(specs))

    # Step 5

    def _generate_preview(self, session_id: str) -> PreviewResult:
        session = self._load_active(session_id)
        step3, step4 = self._step(session, 3), self._step(session, 4)
        self._require_mandatory_approved(session_id, step3)

        template = self._template_or_error(session.selected_template_id)
        title = template["template_name"]
        contract_type = session.contract_type or template.get("contract_type", "")
        clauses = approved_clauses(step3.generated_clauses, step4.optional_clauses, step4.custom_clauses)
        text = render_contract_text(title, contract_type, step3.mandatory_fields, clauses, on=self._clock().date())
        html_content = render_contract_html(
            title, contract_type, step3.mandatory_fields, clauses, on=self._clock().date()
        )

        if self.assembly_agent is not None:
            review = self.assembly_agent.review(
                text, step3.generated_clauses, contract_type, session_id=session_id
            )
        else:
            review = heuristic_review(step3.generated_clauses, text)

        preview = ContractPreview(
            html_content=html_content,
            final_contract_text=text,
            legal_compliance_score=review.legal_compliance_score,
            legal_compliance=review.legal_compliance,
            risk_assessment=review.risk_assessment
        )
        step5 = msgspec.structs.replace(self._step(session, 5), contract_preview=preview)
        session = self._save(session_id, {5: step5})
        self._log_event(session_id, "preview_generated", {"clause_count": len(clauses)})
        return PreviewResult(preview=preview, session=session)

    @log_gateway_call("generate_preview")
    async def generate_preview(self, session_id: str) -> PreviewResult:
        return await asyncio.to_thread(self._generate_preview, session_id)

    def _complete_session(self, session_id: str, review_data: Dict[str, Any]) -> CompletionResult:
        session = self._load_active(session_id)
        step5 = self._step(session, 5)
        preview = step5.contract_preview
        if preview is None or not preview.html_content:
            raise ValidationError(
                "Preview missing",
                user_message="Generate a contract preview before completing."
            )

        step3, step4 = self._step(session, 3), self._step(session, 4)
        self._require_mandatory_approved(session_id, step3)
        clauses = approved_clauses(step3.generated_clauses, step4.optional_clauses, step4.custom_clauses)
        template = self.catalog.get_template(session.selected_template_id) or {}
        contract_type = session.contract_type or template.get("contract_type", "contract")
        now = self._clock()

        final_contract = {
            "title": template.get("template_name", "Contract"),
            "contract_type": contract_type,
            "file_name": contract_file_name(session_id, contract_type, on=now.date()),
            "final_contract_text": preview.final_contract_text,
            "html_content": preview.html_content,
            "approved_clause_ids": [c.clause_id for c in clauses],
            "legal_compliance_score": preview.legal_compliance_score,
            "compliance_rating": compliance_label(preview.legal_compliance_score),
            "disclaimer": disclaimer(session_id, now),
            "completed_at": now.isoformat(),
            "review_data": review_data or {},
        }
        step5 = msgspec.structs.replace(step5, final_contract=final_contract)
        session = self._save(
            session_id,
            {5: step5},
            current_step=5,
            completion_percentage=100.0,
            session_status=SessionStatus.COMPLETED.value
        )
        self._log_event(session_id, "session_completed", {"clause_count": len(clauses)})
        get_session_logger(session_id, "GenerationService").info("Contract completed", clause_count=len(clauses))
        return CompletionResult(session=session, final_contract=final_contract)

    @log_gateway_call("complete_session")
    async def complete_session(self, session_id: str, review_data: Dict[str, Any]) -> CompletionResult:
        return await asyncio.to_thread(self._complete_session, session_id, review_data)

    # Resume views

    def _resume_data(self, session_id: str, step: int) -> ResumeData:
        if step not in (3, 4):
            raise ValidationError(f"No resume view for step {step}")
        session = self._load(session_id)
        if step == 3:
            step3 = self._step(session, 3)
            clauses = list(step3.generated_clauses)
            processed = [c.status == ClauseStatus.APPROVED for c in clauses]
            can_proceed = step3.step3_completed or (bool(clauses) and all(processed))
        else:
            clauses = list(self._step(session, 4).optional_clauses)
            processed = [clause_state.is_terminal(c) for c in clauses]
            can_proceed = all(processed)

        cursor = next((i for i, done in enumerate(processed) if not done), max(len(clauses) - 1, 0))
        return ResumeData(
            clauses=clauses,
            current_clause_index=cursor,
            completed_clauses=sum(processed),
            total_clauses=len(clauses),
            can_proceed=can_proceed
        )

    @log_gateway_call("resume_data")
    async def resume_data(self, session_id: str, step: int) -> ResumeData:
        return await asyncio.to_thread(self._resume_data, session_id, step)

    # Parties

    async def lookup_party(self, external_id: str) -> Optional[PartyInfo]:
        if self.party_registry is None:
            return None
        return await asyncio.to_thread(self.party_registry.lookup, external_id)

    # PartyDirectory
    lookup = lookup_party


def _build_agents(catalog: TemplateCatalog, model_name: str):
    if not os.getenv("GOOGLE_API_KEY"):
        logger.warning("GOOGLE_API_KEY not set, AI drafting disabled")
        return None, None, None
    try:
        return (
            PromptAnalysisAgent(catalog, model_name=model_name),
            ClauseDraftingAgent(catalog, model_name=model_name),
            ContractAssemblyAgent(model_name=model_name),
        )
    except AgentError as e:
        logger.warning(f"AI agents unavailable, using template fallbacks: {e}")
        return None, None, None


def create_generation_service(
    store=None,
    party_registry=None,
    db_path: Optional[str] = None,
    ttl_hours: Optional[float] = None
) -> GenerationService:
    """Factory function to create a generation service with environment-based configuration.

    Args:
        store: Optional SessionStore (SQLite at ``DATABASE_URL`` when omitted)
        party_registry: Optional PartyRegistry (same database when omitted)
        db_path: Optional SQLite path overriding ``DATABASE_URL``
        ttl_hours: Optional session lifetime (uses env var or default)

    Returns:
        Configured GenerationService instance
    """
    from memory.party_registry import create_party_registry
    from memory.session_service import create_session_service

    if store is None:
        store = create_session_service(db_path)
    if party_registry is None:
        party_registry = create_party_registry(db_path)
    if ttl_hours is None:
        ttl_hours = float(os.getenv("SESSION_TTL_HOURS", DEFAULT_SESSION_TTL_HOURS))

    catalog = TemplateCatalog()
    prompt_agent, drafting_agent, assembly_agent = _build_agents(
        catalog, os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
    )
    return GenerationService(
        store=store,
        catalog=catalog,
        party_registry=party_registry,
        prompt_agent=prompt_agent,
        drafting_agent=drafting_agent,
        assembly_agent=assembly_agent,
        ttl_hours=ttl_hours
    )
