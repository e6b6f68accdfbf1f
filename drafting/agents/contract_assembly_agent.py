"""Contract Assembly Agent for the final review step.

This agent uses Gemini to review the assembled contract for legal compliance
and risk before the user signs it off. When the model is unavailable the
score is derived from how many template clauses made it into the contract.
"""

from datetime import datetime
from typing import Dict, List, Optional

from msgspec import Struct

from drafting.agents.base import DEFAULT_MODEL, GeminiAgent
from drafting.error_handling import AgentError, graceful_degradation, handle_errors
from drafting.logging_config import get_session_logger, log_agent_execution
from drafting.models import Clause, ClauseStatus, utc_now
from tools.text_metrics import compliance_label

COMPLIANCE_PASS_SCORE = 60.0

DISCLAIMER = """IMPORTANT LEGAL DISCLAIMER:

This contract was drafted with the help of an automated assistant and is NOT a substitute
for legal advice. Have it reviewed by qualified legal counsel before signing.

Generated: {timestamp}
Session ID: {session_id}"""


class ComplianceReview(Struct, kw_only=True):
    legal_compliance_score: float
    legal_compliance: bool
    risk_assessment: Dict[str, object] = {}


class _ModelReview(Struct):
    legal_compliance_score: float
    overall_risk: str = "medium"
    issues: List[str] = []
    recommendations: List[str] = []


def heuristic_review(mandatory_clauses: List[Clause], contract_text: str = "") -> ComplianceReview:
    """Score the share of mandatory clauses approved, capped at 85 without a model review."""
    total = len(mandatory_clauses)
    approved = [c for c in mandatory_clauses if c.status == ClauseStatus.APPROVED]
    missing = [c.clause_id for c in mandatory_clauses if c.status != ClauseStatus.APPROVED]
    score = round(85.0 * len(approved) / total, 1) if total else 0.0
    if score >= 80:
        risk = "low"
    elif score >= COMPLIANCE_PASS_SCORE:
        risk = "medium"
    else:
        risk = "high"
    return ComplianceReview(
        legal_compliance_score=score,
        legal_compliance=score >= COMPLIANCE_PASS_SCORE,
        risk_assessment={
            "overall_risk": risk,
            "rating": compliance_label(score),
            "missing_mandatory_clauses": missing,
            "issues": [f"Mandatory clause {clause_id} is not approved" for clause_id in missing],
            "recommendations": ["Have the contract reviewed by legal counsel before signing"],
            "method": "heuristic",
        }
    )


def _fallback_review(
    agent: "ContractAssemblyAgent",
    contract_text: str,
    mandatory_clauses: List[Clause],
    contract_type: str = "",
    session_id: str = "default"
) -> ComplianceReview:
    get_session_logger(session_id, "ContractAssemblyAgent").warning("Using heuristic compliance review")
    return heuristic_review(mandatory_clauses, contract_text)


def disclaimer(session_id: str, now: Optional[datetime] = None) -> str:
    return DISCLAIMER.format(timestamp=(now or utc_now()).isoformat(), session_id=session_id)


class ContractAssemblyAgent(GeminiAgent):
    """Agent responsible for the compliance review of the assembled contract."""

    AGENT_NAME = "ContractAssemblyAgent"
    ACKNOWLEDGEMENT = "I understand. I will review the contract and respond with only a JSON object."

    def __init__(self, api_key: Optional[str] = None, model_name: str = DEFAULT_MODEL):
        super().__init__(api_key=api_key, model_name=model_name)

    def _build_instruction(self) -> str:
        return """You are a legal compliance reviewer for drafted contracts.

Your task is to review a complete contract and assess:
1. Whether it contains the provisions expected for its contract type
2. Internal inconsistencies, ambiguous wording and one-sided terms
3. The overall risk for the parties

OUTPUT FORMAT:
{
  "legal_compliance_score": 0-100,
  "overall_risk": "low" | "medium" | "high",
  "issues": ["..."],
  "recommendations": ["..."]
}

Respond ONLY with the JSON object, no additional text or explanation."""

    @log_agent_execution("ContractAssemblyAgent")
    @graceful_degradation(fallback_func=_fallback_review)
    @handle_errors(AgentError)
    def review(
        self,
        contract_text: str,
        mandatory_clauses: List[Clause],
        contract_type: str = "",
        session_id: str = "default"
    ) -> ComplianceReview:
        """Review the assembled contract.

        Args:
            contract_text: Plain-text contract
            mandatory_clauses: Mandatory clauses with their final status
            contract_type: Catalog contract type
            session_id: Session identifier for logging

        Returns:
            ComplianceReview with a 0-100 score
        """
        session_logger = get_session_logger(session_id, "ContractAssemblyAgent")
        response_text = self._generate(
            f"Contract type: {contract_type or 'unspecified'}\n\nContract:\n{contract_text}\n\n"
            "Remember to respond with ONLY the JSON object.",
            session_logger,
            temperature=0.1,
            max_output_tokens=1500
        )
        review = self._parse_json_response(response_text, _ModelReview, session_logger)
        score = max(0.0, min(float(review.legal_compliance_score), 100.0))

        # A contract missing approved mandatory clauses cannot pass
        missing = [c.clause_id for c in mandatory_clauses if c.status != ClauseStatus.APPROVED]
        passed = score >= COMPLIANCE_PASS_SCORE and not missing

        session_logger.info("Compliance review complete", score=score, overall_risk=review.overall_risk)
        return ComplianceReview(
            legal_compliance_score=score,
            legal_compliance=passed,
            risk_assessment={
                "overall_risk": review.overall_risk,
                "rating": compliance_label(score),
                "missing_mandatory_clauses": missing,
                "issues": list(review.issues),
                "recommendations": list(review.recommendations),
                "method": "model",
            }
        )
