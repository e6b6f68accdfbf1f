"""Contract Template Catalog for prompt analysis and clause generation.

This tool provides access to the contract templates database: template
lookup, keyword scoring of a user prompt, and the relevance threshold used
to decide which suggestions are shown.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional
from loguru import logger

from drafting.models import TemplateSuggestion

DEFAULT_MATCH_THRESHOLD = 0.70


def normalized_score(score: float) -> float:
    """Relevance in [0, 1]; percentages above 1 are scaled down."""
    score = float(score or 0.0)
    if score > 1.0:
        score = score / 100.0
    return max(0.0, min(score, 1.0))


def filter_by_threshold(
    templates: List[TemplateSuggestion],
    threshold: float = DEFAULT_MATCH_THRESHOLD
) -> List[TemplateSuggestion]:
    """Suggestions at or above ``threshold``, or all of them when none qualify."""
    qualifying = [t for t in templates if normalized_score(t.relevance_score) >= threshold]
    if qualifying:
        return qualifying
    if templates:
        logger.debug(
            "No template meets threshold, showing all suggestions",
            threshold=threshold,
            template_count=len(templates)
        )
    return list(templates)


def confidence_label(score: float) -> str:
    score = normalized_score(score)
    if score > 0.7:
        return "high"
    if score > 0.4:
        return "medium"
    return "low"


class TemplateCatalog:
    """Tool for looking up contract templates and scoring prompts against them."""

    def __init__(self, templates_path: Optional[str] = None):
        """Initialize the template catalog.

        Args:
            templates_path: Path to contract_templates.json (defaults to drafting/contract_templates.json)
        """
        if templates_path is None:
            templates_path = Path(__file__).parent.parent / "drafting" / "contract_templates.json"

        self.templates_path = Path(templates_path)
        self.templates = self._load_templates()

        logger.info("Contract templates loaded", template_count=len(self.templates))

    def _load_templates(self) -> Dict:
        """Load contract templates from JSON file.

        Raises:
            FileNotFoundError: If templates file doesn't exist
            json.JSONDecodeError: If templates file is invalid JSON
        """
        if not self.templates_path.exists():
            raise FileNotFoundError(f"Contract templates file not found: {self.templates_path}")

        with open(self.templates_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def get_template(self, template_id: str) -> Optional[Dict]:
        return self.templates.get(template_id)

    def get_all_templates(self) -> Dict:
        return self.templates.copy()

    def template_ids(self) -> List[str]:
        return list(self.templates)

    def mandatory_clauses(self, template_id: str) -> List[Dict]:
        template = self.get_template(template_id) or {}
        return list(template.get("mandatory_clauses", []))

    def optional_clauses(self, template_id: str) -> List[Dict]:
        template = self.get_template(template_id) or {}
        return list(template.get("optional_clauses", []))

    def to_suggestion(
        self,
        template_id: str,
        relevance_score: float,
        matching_keywords: Optional[List[str]] = None,
        explanation: str = ""
    ) -> TemplateSuggestion:
        template = self.templates[template_id]
        return TemplateSuggestion(
            template_id=template_id,
            template_name=template["template_name"],
            contract_type=template.get("contract_type", ""),
            description=template.get("description", ""),
            relevance_score=normalized_score(relevance_score),
            explanation=explanation,
            confidence=confidence_label(relevance_score),
            use_cases=list(template.get("use_cases", [])),
            matching_keywords=list(matching_keywords or []),
            estimated_completion_time=template.get("estimated_completion_time"),
            complexity=template.get("complexity")
        )

    def score_prompt(self, prompt: str, limit: int = 3) -> List[TemplateSuggestion]:
        """Score templates by keyword and phrase overlap with the prompt.

        Keywords count once and phrases twice; the score is the share of the
        template's maximum. Templates with no match are left out.

        Args:
            prompt: User's free-text description
            limit: Maximum number of suggestions

        Returns:
            Suggestions sorted by relevance, best first
        """
        lower_prompt = prompt.lower()
        suggestions = []

        for template_id, template in self.templates.items():
            keywords = template.get("keywords", [])
            phrases = template.get("phrases", [])
            matching = [k for k in keywords if k in lower_prompt]
            matching_phrases = [p for p in phrases if p in lower_prompt]
            score = len(matching) + 2 * len(matching_phrases)
            if score == 0:
                continue

            maximum = max(len(keywords) + 2 * len(phrases), 1)
            relevance = min(score / maximum, 1.0)
            # The first keyword names the contract itself
            if template.get("contract_type", "") in lower_prompt.split() or (keywords and keywords[0] in matching):
                relevance = max(relevance, 0.75)

            suggestions.append(self.to_suggestion(
                template_id,
                relevance,
                matching + matching_phrases,
                self._reasoning(relevance, matching + matching_phrases)
            ))

        suggestions.sort(key=lambda s: s.relevance_score, reverse=True)
        return suggestions[:limit]

    @staticmethod
    def _reasoning(relevance: float, keywords: List[str]) -> str:
        if relevance > 0.7:
            return f"High confidence match based on key terms: {', '.join(keywords[:3])}"
        if relevance > 0.4:
            return f"Moderate match based on terms: {', '.join(keywords[:2])}"
        return "Low confidence match with limited relevant terms"
