"""Clause Drafting Agent for generating contract clause text.

This agent uses Gemini to draft the mandatory and optional clauses of a
catalog template, user-requested custom clauses, and revisions of a single
clause from user feedback. Every entry point degrades to deterministic
template wording when the model is unavailable, so a session can always
progress.
"""

import re
from typing import Dict, List, Optional

from msgspec import Struct

from drafting.agents.base import DEFAULT_MODEL, GeminiAgent
from drafting.error_handling import AgentError, graceful_degradation, handle_errors
from drafting.logging_config import get_session_logger, log_agent_execution
from drafting.models import Clause, ClauseStatus, CustomClauseSpec, MandatoryFields
from tools.template_catalog import TemplateCatalog

EXCERPT_WORDS = 40


class _DraftedClause(Struct):
    clause_id: str
    content: str
    confidence_score: Optional[float] = None
    legal_references: List[str] = []
    risk_assessment: Optional[str] = None


def _party_names(fields: Optional[MandatoryFields]):
    fields = fields or MandatoryFields()
    first = fields.party1.name if fields.party1 else "the First Party"
    second = fields.party2.name if fields.party2 else "the Second Party"
    return first, second


def _excerpt(text: str, words: int = EXCERPT_WORDS) -> str:
    tokens = (text or "").split()
    excerpt = " ".join(tokens[:words])
    return excerpt + ("..." if len(tokens) > words else "")


def template_clause_text(
    title: str,
    description: str,
    fields: Optional[MandatoryFields] = None,
    explanation: str = "",
    modifications: Optional[str] = None
) -> str:
    """Deterministic clause wording built from the template definition."""
    first, second = _party_names(fields)
    paragraphs = [
        f"{title}. This clause is entered into between {first} and {second}. {description}",
    ]
    if fields is not None and fields.contract_details:
        terms = "; ".join(f"{k.replace('_', ' ')}: {v}" for k, v in sorted(fields.contract_details.items()))
        paragraphs.append(f"The parties agree to the following particulars: {terms}.")
    if explanation:
        paragraphs.append(f"This clause is to be read in light of the parties' stated purpose: {_excerpt(explanation)}")
    if modifications:
        paragraphs.append(f"As requested by the parties: {modifications.strip()}")
    return "\n\n".join(paragraphs)


def _custom_clause_id(spec: CustomClauseSpec, index: int) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", spec.title.lower()).strip("_")[:40] or "clause"
    return f"custom_{slug}_{index + 1}"


def template_clauses(
    definitions: List[Dict],
    mandatory: bool,
    fields: Optional[MandatoryFields] = None,
    explanation: str = "",
    start_order: int = 0
) -> List[Clause]:
    return [
        Clause(
            clause_id=d["clause_id"],
            title=d["title"],
            description=d.get("description"),
            content=template_clause_text(d["title"], d.get("description", ""), fields, explanation),
            status=ClauseStatus.AI_GENERATED,
            is_mandatory=mandatory,
            order=start_order + i,
            confidence_score=0.5,
        )
        for i, d in enumerate(definitions)
    ]


def custom_clause_definitions(specs: List[CustomClauseSpec], start_index: int = 0) -> List[Dict]:
    return [
        {
            "clause_id": _custom_clause_id(spec, start_index + i),
            "title": spec.title.strip(),
            "description": spec.description.strip(),
        }
        for i, spec in enumerate(specs)
    ]


def _fallback_draft(
    agent: "ClauseDraftingAgent",
    definitions: List[Dict],
    mandatory: bool,
    fields: Optional[MandatoryFields] = None,
    explanation: str = "",
    start_order: int = 0,
    session_id: str = "default"
) -> List[Clause]:
    get_session_logger(session_id, "ClauseDraftingAgent").warning(
        "Using template wording for clauses", clause_count=len(definitions)
    )
    return template_clauses(definitions, mandatory, fields, explanation, start_order)


def template_redraft(
    clause: Clause,
    modifications: str,
    fields: Optional[MandatoryFields] = None,
    explanation: str = ""
) -> Clause:
    content = template_clause_text(clause.title, clause.description or "", fields, explanation, modifications)
    return Clause(
        clause_id=clause.clause_id,
        title=clause.title,
        description=clause.description,
        content=content,
        ai_generated_content=content,
        status=ClauseStatus.REGENERATED,
        is_mandatory=clause.is_mandatory,
        order=clause.order,
        confidence_score=0.5,
        user_modifications=modifications
    )


def _fallback_redraft(
    agent: "ClauseDraftingAgent",
    clause: Clause,
    modifications: str,
    fields: Optional[MandatoryFields] = None,
    explanation: str = "",
    session_id: str = "default"
) -> Clause:
    get_session_logger(session_id, "ClauseDraftingAgent").warning(
        "Using template wording for clause revision", clause_id=clause.clause_id
    )
    return template_redraft(clause, modifications, fields, explanation)


class ClauseDraftingAgent(GeminiAgent):
    """Agent responsible for drafting clause text.

    This agent:
    1. Drafts the clauses listed by a template for the parties at hand
    2. Drafts custom clauses from a title and description
    3. Revises one clause according to user feedback
    """

    AGENT_NAME = "ClauseDraftingAgent"
    ACKNOWLEDGEMENT = "I understand. I will draft the requested clauses and respond with only a JSON array."

    def __init__(
        self,
        catalog: TemplateCatalog,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MODEL
    ):
        self.catalog = catalog
        super().__init__(api_key=api_key, model_name=model_name)

    def _build_instruction(self) -> str:
        return """You are a contract drafting assistant. You write clear, enforceable clauses in plain English.

Your task is to draft contract clauses from their titles and descriptions, tailored to the parties and the purpose described by the user.

GUIDELINES:
- Keep each clause self-contained and refer to the parties by name
- Do not invent facts that contradict the provided particulars
- Cite relevant legal concepts in legal_references when useful
- confidence_score is a number between 0 and 1
- risk_assessment is one short sentence

OUTPUT FORMAT:
A JSON array with one object per requested clause:
[
  {
    "clause_id": "nda_definition",
    "content": "...",
    "confidence_score": 0.9,
    "legal_references": ["..."],
    "risk_assessment": "..."
  }
]

Respond ONLY with the JSON array, no additional text or explanation."""

    def _context_block(self, fields: Optional[MandatoryFields], explanation: str) -> str:
        first, second = _party_names(fields)
        details = ""
        if fields is not None and fields.contract_details:
            details = "\n".join(f"- {k}: {v}" for k, v in sorted(fields.contract_details.items()))
        return f"""Parties: {first} and {second}
Particulars:
{details or '- none provided'}

Purpose described by the user:
{explanation or 'not provided'}"""

    @log_agent_execution("ClauseDraftingAgent")
    @graceful_degradation(fallback_func=_fallback_draft)
    @handle_errors(AgentError)
    def draft(
        self,
        definitions: List[Dict],
        mandatory: bool,
        fields: Optional[MandatoryFields] = None,
        explanation: str = "",
        start_order: int = 0,
        session_id: str = "default"
    ) -> List[Clause]:
        """Draft clauses for the given definitions.

        Args:
            definitions: Dicts with clause_id, title and description
            mandatory: Whether the clauses belong to the mandatory collection
            fields: Party identities and contract particulars
            explanation: User's description of the contract's purpose
            start_order: Order assigned to the first clause
            session_id: Session identifier for logging

        Returns:
            Clauses in the order of ``definitions``, status ai_generated
        """
        if not definitions:
            return []

        session_logger = get_session_logger(session_id, "ClauseDraftingAgent")
        requested = "\n".join(
            f"- clause_id: {d['clause_id']} | title: {d['title']} | description: {d.get('description', '')}"
            for d in definitions
        )
        response_text = self._generate(
            f"{self._context_block(fields, explanation)}\n\nDraft these clauses:\n{requested}\n\n"
            "Remember to respond with ONLY a JSON array.",
            session_logger,
            temperature=0.3,
            max_output_tokens=8000
        )
        drafted = self._parse_json_response(response_text, List[_DraftedClause], session_logger)
        by_id = {d.clause_id: d for d in drafted}

        clauses = []
        for i, definition in enumerate(definitions):
            result = by_id.get(definition["clause_id"])
            if result is None or not result.content.strip():
                session_logger.warning("Model omitted clause, using template wording", clause_id=definition["clause_id"])
                clauses.extend(template_clauses([definition], mandatory, fields, explanation, start_order + i))
                continue
            clauses.append(Clause(
                clause_id=definition["clause_id"],
                title=definition["title"],
                description=definition.get("description"),
                content=result.content.strip(),
                ai_generated_content=result.content.strip(),
                status=ClauseStatus.AI_GENERATED,
                is_mandatory=mandatory,
                order=start_order + i,
                confidence_score=result.confidence_score,
                legal_references=list(result.legal_references),
                risk_assessment=result.risk_assessment
            ))

        session_logger.info("Clauses drafted", clause_count=len(clauses))
        return clauses

    @log_agent_execution("ClauseDraftingAgent")
    @graceful_degradation(fallback_func=_fallback_redraft)
    @handle_errors(AgentError)
    def redraft(
        self,
        clause: Clause,
        modifications: str,
        fields: Optional[MandatoryFields] = None,
        explanation: str = "",
        session_id: str = "default"
    ) -> Clause:
        """Revise one clause according to the user's requested changes."""
        session_logger = get_session_logger(session_id, "ClauseDraftingAgent")
        response_text = self._generate(
            f"{self._context_block(fields, explanation)}\n\n"
            f"Revise this clause (clause_id: {clause.clause_id}, title: {clause.title}):\n{clause.content}\n\n"
            f"Requested changes:\n{modifications}\n\n"
            "Respond with ONLY a JSON array containing the single revised clause.",
            session_logger,
            temperature=0.3,
            max_output_tokens=3000
        )
        drafted = self._parse_json_response(response_text, List[_DraftedClause], session_logger)
        if not drafted or not drafted[0].content.strip():
            raise AgentError(f"No revision returned for clause {clause.clause_id}")

        revision = drafted[0]
        return Clause(
            clause_id=clause.clause_id,
            title=clause.title,
            description=clause.description,
            content=revision.content.strip(),
            ai_generated_content=revision.content.strip(),
            status=ClauseStatus.REGENERATED,
            is_mandatory=clause.is_mandatory,
            order=clause.order,
            confidence_score=revision.confidence_score,
            legal_references=list(revision.legal_references),
            risk_assessment=revision.risk_assessment,
            user_modifications=modifications
        )
