"""Agents package for contract drafting."""

from drafting.agents.prompt_analysis_agent import PromptAnalysisAgent, keyword_analysis
from drafting.agents.clause_drafting_agent import (
    ClauseDraftingAgent,
    custom_clause_definitions,
    template_clauses,
    template_redraft,
)
from drafting.agents.contract_assembly_agent import ContractAssemblyAgent, heuristic_review

__all__ = [
    "PromptAnalysisAgent",
    "ClauseDraftingAgent",
    "ContractAssemblyAgent",
    "keyword_analysis",
    "template_clauses",
    "template_redraft",
    "custom_clause_definitions",
    "heuristic_review",
]
