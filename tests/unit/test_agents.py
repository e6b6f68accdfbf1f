"""Tests for the Gemini drafting agents with the model call mocked out."""

import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import make_clause
from drafting.agents.clause_drafting_agent import (
    ClauseDraftingAgent,
    custom_clause_definitions,
    template_clause_text,
    template_clauses,
    template_redraft,
)
from drafting.agents.contract_assembly_agent import ContractAssemblyAgent, disclaimer, heuristic_review
from drafting.agents.prompt_analysis_agent import UNSUPPORTED_MESSAGE, PromptAnalysisAgent, keyword_analysis
from drafting.error_handling import AgentError, LLMError
from drafting.models import ClauseStatus, CustomClauseSpec, MandatoryFields


@pytest.fixture(autouse=True)
def genai_client():
    with patch("drafting.agents.base.genai.Client") as client:
        yield client


@pytest.fixture
def analysis_agent(catalog):
    agent = PromptAnalysisAgent(catalog, api_key="test-key")
    agent._generate = MagicMock()
    return agent


@pytest.fixture
def drafting_agent(catalog):
    agent = ClauseDraftingAgent(catalog, api_key="test-key")
    agent._generate = MagicMock()
    return agent


@pytest.fixture
def assembly_agent():
    agent = ContractAssemblyAgent(api_key="test-key")
    agent._generate = MagicMock()
    return agent


DEFINITIONS = [
    {"clause_id": "nda_parties", "title": "Parties", "description": "Identifies the parties."},
    {"clause_id": "nda_term", "title": "Term", "description": "How long the obligations last."},
]


def test_agent_requires_api_key(catalog, monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

    with pytest.raises(AgentError):
        PromptAnalysisAgent(catalog)


def test_parse_json_strips_markdown_fences(analysis_agent):
    parsed = analysis_agent._parse_json_response('```json\n{"a": [1, 2]}\n```', dict, MagicMock())

    assert parsed == {"a": [1, 2]}


def test_parse_json_rejects_malformed_text(analysis_agent):
    with pytest.raises(LLMError):
        analysis_agent._parse_json_response("not json", dict, MagicMock())


# Prompt analysis

def test_model_analysis_drops_unknown_templates(analysis_agent):
    analysis_agent._generate.return_value = json.dumps({
        "can_handle": True,
        "matches": [
            {"template_id": "made_up_template", "relevance_score": 0.99},
            {"template_id": "partnership_agreement_template", "relevance_score": 0.72},
            {"template_id": "nda_template", "relevance_score": 0.85, "matching_keywords": ["nda"]},
        ],
        "reasoning": "NDA between partners",
        "extracted_keywords": ["nda", "partnership"],
        "confidence_score": 0.85,
    })

    result = analysis_agent.analyze("I need an NDA for a partnership", session_id="s1")

    assert result.can_handle
    assert [t.template_id for t in result.suggested_templates] == ["nda_template", "partnership_agreement_template"]
    assert result.suggested_templates[0].template_name
    assert result.unsupported_message is None
    assert result.user_prompt == "I need an NDA for a partnership"


def test_model_analysis_without_known_templates_is_unsupported(analysis_agent):
    analysis_agent._generate.return_value = json.dumps({
        "can_handle": True,
        "matches": [{"template_id": "poem_template", "relevance_score": 0.9}],
    })

    result = analysis_agent.analyze("Write me a poem about the sea", session_id="s1")

    assert not result.can_handle
    assert result.suggested_templates == []
    assert result.unsupported_message == UNSUPPORTED_MESSAGE


def test_analysis_falls_back_to_keywords(analysis_agent):
    analysis_agent._generate.side_effect = LLMError("quota exceeded")

    result = analysis_agent.analyze("We want to rent out my property to a tenant", session_id="s1")

    assert result.can_handle
    assert result.suggested_templates[0].template_id == "rental_agreement_template"


def test_keyword_analysis_unsupported(catalog):
    result = keyword_analysis(catalog, "Write me a poem about the sea")

    assert not result.can_handle
    assert result.unsupported_message == UNSUPPORTED_MESSAGE
    assert result.suggested_templates == []


# Clause drafting

def test_template_clause_text_mentions_parties_and_changes(fields):
    text = template_clause_text("Term", "How long.", fields, "", modifications="  Make it two years ")

    assert "between Alice Smith and Bob Jones" in text
    assert "jurisdiction: Delaware" in text
    assert text.endswith("As requested by the parties: Make it two years")


def test_template_clauses_keep_definition_order():
    clauses = template_clauses(DEFINITIONS, mandatory=False, start_order=5)

    assert [c.clause_id for c in clauses] == ["nda_parties", "nda_term"]
    assert [c.order for c in clauses] == [5, 6]
    assert all(c.status == ClauseStatus.AI_GENERATED and not c.is_mandatory for c in clauses)
    assert "the First Party and the Second Party" in clauses[0].content


def test_custom_clause_definitions_slug_ids():
    specs = [
        CustomClauseSpec(title=" Data Residency ", description="EU only"),
        CustomClauseSpec(title="!!!", description="Odd title"),
    ]

    definitions = custom_clause_definitions(specs, start_index=2)

    assert definitions[0] == {"clause_id": "custom_data_residency_3", "title": "Data Residency", "description": "EU only"}
    assert definitions[1]["clause_id"] == "custom_clause_4"


def test_template_redraft_records_modifications():
    revised = template_redraft(make_clause("nda_term", order=3), "Shorten to one year")

    assert revised.status == ClauseStatus.REGENERATED
    assert revised.user_modifications == "Shorten to one year"
    assert revised.order == 3
    assert revised.content == revised.ai_generated_content


def test_draft_uses_model_text_and_fills_omissions(drafting_agent, fields):
    drafting_agent._generate.return_value = json.dumps([
        {"clause_id": "nda_parties", "content": " Alice and Bob agree. ", "confidence_score": 0.9,
         "legal_references": ["Contract law"]},
    ])

    clauses = drafting_agent.draft(DEFINITIONS, True, fields, "", 0, session_id="s1")

    assert clauses[0].content == "Alice and Bob agree."
    assert clauses[0].confidence_score == 0.9
    assert clauses[0].legal_references == ["Contract law"]
    assert clauses[1].clause_id == "nda_term"
    assert clauses[1].confidence_score == 0.5
    assert [c.order for c in clauses] == [0, 1]


def test_draft_falls_back_to_template_wording(drafting_agent):
    drafting_agent._generate.side_effect = LLMError("model unavailable")

    clauses = drafting_agent.draft(DEFINITIONS, True, session_id="s1")

    assert [c.clause_id for c in clauses] == ["nda_parties", "nda_term"]
    assert all(c.confidence_score == 0.5 for c in clauses)


def test_draft_without_definitions_skips_model(drafting_agent):
    assert drafting_agent.draft([], True, session_id="s1") == []
    drafting_agent._generate.assert_not_called()


def test_redraft_with_model(drafting_agent):
    drafting_agent._generate.return_value = '[{"clause_id": "nda_term", "content": "One year."}]'

    revised = drafting_agent.redraft(make_clause("nda_term"), "Shorten it", session_id="s1")

    assert revised.content == "One year."
    assert revised.status == ClauseStatus.REGENERATED
    assert revised.user_modifications == "Shorten it"


def test_redraft_empty_model_answer_falls_back(drafting_agent):
    drafting_agent._generate.return_value = "[]"

    revised = drafting_agent.redraft(make_clause("nda_term"), "Shorten it", session_id="s1")

    assert "As requested by the parties: Shorten it" in revised.content


# Compliance review

def test_heuristic_review_scores_approved_share():
    clauses = [
        make_clause("a", status=ClauseStatus.APPROVED),
        make_clause("b", status=ClauseStatus.APPROVED),
    ]

    review = heuristic_review(clauses)

    assert review.legal_compliance_score == 85.0
    assert review.legal_compliance
    assert review.risk_assessment["rating"] == "Excellent"
    assert review.risk_assessment["overall_risk"] == "low"


def test_heuristic_review_flags_missing_mandatory_clauses():
    clauses = [make_clause("a", status=ClauseStatus.APPROVED), make_clause("b")]

    review = heuristic_review(clauses)

    assert review.legal_compliance_score == 42.5
    assert not review.legal_compliance
    assert review.risk_assessment["missing_mandatory_clauses"] == ["b"]
    assert heuristic_review([]).legal_compliance_score == 0.0


def test_model_review_clamps_score(assembly_agent):
    assembly_agent._generate.return_value = json.dumps({"legal_compliance_score": 140, "overall_risk": "low"})

    review = assembly_agent.review("Contract", [make_clause("a", status=ClauseStatus.APPROVED)], "nda", session_id="s1")

    assert review.legal_compliance_score == 100.0
    assert review.legal_compliance
    assert review.risk_assessment["method"] == "model"


def test_model_review_fails_with_unapproved_mandatory(assembly_agent):
    assembly_agent._generate.return_value = '{"legal_compliance_score": 95}'

    review = assembly_agent.review("Contract", [make_clause("a")], session_id="s1")

    assert not review.legal_compliance
    assert review.risk_assessment["missing_mandatory_clauses"] == ["a"]


def test_review_falls_back_to_heuristic(assembly_agent):
    assembly_agent._generate.side_effect = LLMError("timeout")

    review = assembly_agent.review("Contract", [make_clause("a", status=ClauseStatus.APPROVED)], session_id="s1")

    assert review.risk_assessment["method"] == "heuristic"


def test_disclaimer_names_session():
    assert "Session ID: sess-9" in disclaimer("sess-9")
