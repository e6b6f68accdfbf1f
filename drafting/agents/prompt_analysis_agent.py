"""Prompt Analysis Agent for matching a user's request to contract templates.

This agent uses Gemini to read the free-text description from step 1, decide
whether the request is a contract the catalog can draft, and rank the
catalog templates by relevance. Keyword scoring over the catalog is the
deterministic fallback when the model is unavailable.
"""

from typing import Dict, List, Optional

from msgspec import Struct

from drafting.agents.base import DEFAULT_MODEL, GeminiAgent
from drafting.error_handling import AgentError, graceful_degradation, handle_errors
from drafting.logging_config import get_session_logger, log_agent_execution
from drafting.models import AnalysisResult, utc_now
from tools.template_catalog import TemplateCatalog

UNSUPPORTED_MESSAGE = (
    "We could not match your request to a supported contract type. "
    "Supported types include NDAs, employment, service, rental and partnership agreements."
)


class _TemplateMatch(Struct):
    template_id: str
    relevance_score: float
    explanation: str = ""
    matching_keywords: List[str] = []


class _PromptAnalysis(Struct):
    can_handle: bool
    matches: List[_TemplateMatch] = []
    reasoning: str = ""
    extracted_keywords: List[str] = []
    confidence_score: Optional[float] = None
    unsupported_message: Optional[str] = None


def keyword_analysis(catalog: TemplateCatalog, prompt: str, limit: int = 3) -> AnalysisResult:
    """Analyze ``prompt`` with catalog keyword scoring only."""
    suggestions = catalog.score_prompt(prompt, limit=limit)
    keywords = sorted({k for s in suggestions for k in s.matching_keywords})
    if not suggestions:
        return AnalysisResult(
            can_handle=False,
            reasoning="No template keywords found in the request",
            unsupported_message=UNSUPPORTED_MESSAGE,
            user_prompt=prompt,
            ai_analysis_timestamp=utc_now()
        )
    return AnalysisResult(
        can_handle=True,
        suggested_templates=suggestions,
        reasoning=f"Matched {len(suggestions)} template(s) by keyword overlap",
        keywords=keywords,
        confidence_score=suggestions[0].relevance_score,
        user_prompt=prompt,
        ai_analysis_timestamp=utc_now()
    )


def _fallback_analysis(agent: "PromptAnalysisAgent", prompt: str, session_id: str = "default") -> AnalysisResult:
    get_session_logger(session_id, "PromptAnalysisAgent").warning("Using keyword fallback for prompt analysis")
    return keyword_analysis(agent.catalog, prompt)


class PromptAnalysisAgent(GeminiAgent):
    """Agent responsible for step 1 prompt analysis.

    This agent:
    1. Decides whether the request is a contract the catalog supports
    2. Ranks catalog templates with a relevance score in [0, 1]
    3. Extracts the key terms that drove the match
    """

    AGENT_NAME = "PromptAnalysisAgent"
    ACKNOWLEDGEMENT = "I understand. I will match the request to the catalog and respond with only JSON."

    def __init__(
        self,
        catalog: TemplateCatalog,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MODEL
    ):
        self.catalog = catalog
        super().__init__(api_key=api_key, model_name=model_name)

    def _build_instruction(self) -> str:
        catalog_lines = "\n".join(
            f"- {template_id}: {template['template_name']} ({template.get('description', '')})"
            for template_id, template in self.catalog.get_all_templates().items()
        )
        return f"""You are a legal intake assistant for a contract drafting service.

Your task is to read a user's description of what they need and match it against this template catalog:
{catalog_lines}

GUIDELINES:
- Only use template ids from the catalog above
- relevance_score is a number between 0 and 1
- Set can_handle to false when the request is not a contract the catalog can draft, and explain why in unsupported_message
- Return at most 3 matches, best first

OUTPUT FORMAT:
{{
  "can_handle": true,
  "matches": [
    {{"template_id": "nda_template", "relevance_score": 0.92, "explanation": "...", "matching_keywords": ["nda"]}}
  ],
  "reasoning": "...",
  "extracted_keywords": ["..."],
  "confidence_score": 0.9,
  "unsupported_message": null
}}

Respond ONLY with the JSON object, no additional text or explanation."""

    @log_agent_execution("PromptAnalysisAgent")
    @graceful_degradation(fallback_func=_fallback_analysis)
    @handle_errors(AgentError)
    def analyze(self, prompt: str, session_id: str = "default") -> AnalysisResult:
        """Analyze a step 1 prompt.

        Args:
            prompt: User's free-text contract description
            session_id: Session identifier for logging

        Returns:
            AnalysisResult with the suggested templates
        """
        session_logger = get_session_logger(session_id, "PromptAnalysisAgent")
        response_text = self._generate(
            f"User request:\n{prompt}\n\nRemember to respond with ONLY the JSON object.",
            session_logger,
            temperature=0.1,
            max_output_tokens=1500
        )
        analysis = self._parse_json_response(response_text, _PromptAnalysis, session_logger)
        return self._to_result(analysis, prompt, session_logger)

    def _to_result(self, analysis: _PromptAnalysis, prompt: str, session_logger) -> AnalysisResult:
        seen: Dict[str, _TemplateMatch] = {}
        for match in analysis.matches:
            if self.catalog.get_template(match.template_id) is None:
                session_logger.warning("Dropping unknown template from analysis", template_id=match.template_id)
                continue
            if match.template_id not in seen:
                seen[match.template_id] = match

        suggestions = [
            self.catalog.to_suggestion(m.template_id, m.relevance_score, m.matching_keywords, m.explanation)
            for m in seen.values()
        ]
        suggestions.sort(key=lambda s: s.relevance_score, reverse=True)
        can_handle = analysis.can_handle and bool(suggestions)

        return AnalysisResult(
            can_handle=can_handle,
            suggested_templates=suggestions,
            reasoning=analysis.reasoning,
            keywords=list(analysis.extracted_keywords),
            confidence_score=analysis.confidence_score,
            unsupported_message=None if can_handle else (analysis.unsupported_message or UNSUPPORTED_MESSAGE),
            user_prompt=prompt,
            ai_analysis_timestamp=utc_now()
        )
