"""Text metrics and input validation for the contract generation steps.

Word counting here is the single definition used both for the live progress
display and for the step 3 generation gate.
"""

from datetime import date
from typing import Optional, Tuple

from drafting.models import CustomClauseSpec, MandatoryFields, TOTAL_STEPS

MIN_PROMPT_CHARS = 10
MIN_EXPLANATION_WORDS = 200

STEP_NAMES = {
    1: "Initial Prompt",
    2: "Template Selection",
    3: "Clause Creation",
    4: "Custom Clauses",
    5: "Final Review",
}

STEP_DESCRIPTIONS = {
    1: "Describe your contract needs",
    2: "Choose a contract template",
    3: "Generate and review mandatory clauses",
    4: "Add optional and custom clauses",
    5: "Review and complete contract",
}


def count_words(text: Optional[str]) -> int:
    """Count whitespace-separated words, discarding empty tokens."""
    if not text:
        return 0
    return len(text.split())


def validate_prompt(prompt: Optional[str]) -> Tuple[bool, Optional[str]]:
    if not prompt or len(prompt.strip()) < MIN_PROMPT_CHARS:
        return False, (
            f"Please provide a more detailed description (at least {MIN_PROMPT_CHARS} characters)"
        )
    return True, None


def validate_explanation(explanation: Optional[str]) -> Tuple[bool, Optional[str]]:
    word_count = count_words(explanation)
    if word_count < MIN_EXPLANATION_WORDS:
        return False, (
            f"Contract explanation must contain at least {MIN_EXPLANATION_WORDS} words. "
            f"Current: {word_count} words."
        )
    return True, None


def validate_step3_inputs(
    explanation: Optional[str],
    fields: MandatoryFields
) -> Tuple[bool, Optional[str]]:
    """Check everything mandatory clause generation needs."""
    ok, error = validate_explanation(explanation)
    if not ok:
        return ok, error
    if fields.party1 is None or not fields.party1.external_id.strip():
        return False, "First party App ID is required"
    return True, None


def validate_custom_clause(spec: CustomClauseSpec) -> bool:
    return bool(spec.title.strip()) and bool(spec.description.strip())


def step_progress(current_step: int, total_steps: int = TOTAL_STEPS) -> int:
    """Percentage of the workflow behind the current step."""
    return round((current_step - 1) / (total_steps - 1) * 100)


def step_name(step: int) -> str:
    return STEP_NAMES.get(step, "Unknown Step")


def step_description(step: int) -> str:
    return STEP_DESCRIPTIONS.get(step, "Unknown Step")


def compliance_label(score: float) -> str:
    if score >= 80:
        return "Excellent"
    if score >= 60:
        return "Good"
    return "Needs Review"


def format_contract_type(contract_type: str) -> str:
    return " ".join(word.capitalize() for word in contract_type.split("_"))


def contract_file_name(session_id: str, contract_type: str, on: Optional[date] = None) -> str:
    on = on or date.today()
    return f"{contract_type}_contract_{session_id[:8]}_{on.isoformat()}.pdf"
