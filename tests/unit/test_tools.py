from datetime import date

import pytest

from conftest import make_clause, make_party
from drafting.models import ClauseStatus, CustomClauseSpec, MandatoryFields, TemplateSuggestion
from tools.contract_renderer import (
    approved_clauses,
    clause_summary,
    render_contract_html,
    render_contract_text,
)
from tools.template_catalog import (
    DEFAULT_MATCH_THRESHOLD,
    TemplateCatalog,
    confidence_label,
    filter_by_threshold,
    normalized_score,
)
from tools.text_metrics import (
    compliance_label,
    contract_file_name,
    count_words,
    format_contract_type,
    step_description,
    step_name,
    step_progress,
    validate_custom_clause,
    validate_explanation,
    validate_prompt,
    validate_step3_inputs,
)


# Text metrics

@pytest.mark.parametrize("text,expected", [
    (None, 0),
    ("", 0),
    ("   \n\t ", 0),
    ("one", 1),
    ("  one   two\nthree\tfour  ", 4),
])
def test_count_words(text, expected):
    assert count_words(text) == expected


def test_explanation_gate_at_200_words():
    assert not validate_explanation(" ".join(["w"] * 199))[0]
    assert validate_explanation(" ".join(["w"] * 200)) == (True, None)


def test_step3_inputs_need_first_party():
    explanation = " ".join(["w"] * 200)

    assert validate_step3_inputs(explanation, MandatoryFields()) == (False, "First party App ID is required")
    assert validate_step3_inputs(explanation, MandatoryFields(party1=make_party())) == (True, None)


def test_prompt_and_custom_clause_validation():
    assert not validate_prompt("  short  ")[0]
    assert validate_prompt("I need an NDA for a partnership")[0]
    assert not validate_custom_clause(CustomClauseSpec(title="Audit", description="  "))
    assert validate_custom_clause(CustomClauseSpec(title="Audit", description="Annual audits"))


def test_progress_and_labels():
    assert [step_progress(n) for n in range(1, 6)] == [0, 25, 50, 75, 100]
    assert step_name(3) == "Clause Creation"
    assert step_name(9) == "Unknown Step"
    assert step_description(4) == "Add optional and custom clauses"
    assert [compliance_label(s) for s in (85, 60, 59.9)] == ["Excellent", "Good", "Needs Review"]
    assert format_contract_type("service_agreement") == "Service Agreement"
    assert contract_file_name("abcdef123456", "nda", on=date(2026, 3, 1)) == "nda_contract_abcdef12_2026-03-01.pdf"


# Template catalog

def suggestion(score):
    return TemplateSuggestion(template_id=f"t{score}", template_name="T", relevance_score=score)


def test_threshold_filter():
    scored = [suggestion(s) for s in (0.85, 0.72, 0.65, 0.40)]
    assert [t.relevance_score for t in filter_by_threshold(scored)] == [0.85, 0.72]

    low = [suggestion(s) for s in (0.69, 0.5, 0.3, 0.1)]
    assert filter_by_threshold(low) == low
    assert filter_by_threshold([]) == []
    assert DEFAULT_MATCH_THRESHOLD == 0.70


def test_score_normalization():
    assert normalized_score(85) == 0.85
    assert normalized_score(-1) == 0.0
    assert normalized_score(None) == 0.0
    assert confidence_label(0.9) == "high"
    assert confidence_label(0.5) == "medium"
    assert confidence_label(0.1) == "low"


def test_catalog_lookup(catalog):
    assert set(catalog.template_ids()) >= {"nda_template", "employment_template"}
    assert catalog.get_template("missing") is None
    assert catalog.mandatory_clauses("missing") == []
    assert all("clause_id" in c for c in catalog.optional_clauses("nda_template"))


def test_score_prompt_ranks_matching_template(catalog):
    suggestions = catalog.score_prompt("We want to rent out my property to a tenant")

    assert suggestions[0].template_id == "rental_agreement_template"
    assert suggestions[0].confidence == "high"
    assert "tenant" in suggestions[0].matching_keywords
    assert catalog.score_prompt("Write me a poem about the sea") == []


def test_missing_templates_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        TemplateCatalog(str(tmp_path / "none.json"))


# Contract renderer

def test_approved_clauses_in_document_order():
    mandatory = [make_clause("b", status=ClauseStatus.APPROVED, order=1), make_clause("a", status=ClauseStatus.APPROVED)]
    optional = [make_clause("o", status=ClauseStatus.REJECTED, is_mandatory=False)]
    custom = [make_clause("c", status=ClauseStatus.APPROVED, is_mandatory=False)]

    assert [c.clause_id for c in approved_clauses(mandatory, optional, custom)] == ["a", "b", "c"]


def test_render_contract_text(fields):
    clauses = [make_clause("nda_parties", status=ClauseStatus.APPROVED, content="The parties agree.")]

    text = render_contract_text("Non-Disclosure Agreement", "nda", fields, clauses, on=date(2026, 3, 1))

    assert text.startswith("NON-DISCLOSURE AGREEMENT\nType: Nda\nDate: 2026-03-01")
    assert "Party 2: Bob Jones (user-2@example.com), 1 Main Street" in text
    assert "Jurisdiction: Delaware" in text
    assert "1. Nda Parties\nThe parties agree." in text


def test_render_contract_html_escapes_text():
    clause = make_clause("x", status=ClauseStatus.APPROVED, content="<script>alert(1)</script>\n\nSecond")

    html = render_contract_html("A & B", "nda", MandatoryFields(), [clause], on=date(2026, 3, 1))

    assert html.startswith('<article class="contract"><h1>A &amp; B</h1>')
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert '<section class="clause" id="x">' in html
    assert "<p>Second</p>" in html
    assert "Party 1: [not provided]" in html


def test_clause_summary():
    summary = clause_summary([make_clause("a"), make_clause("b", status=ClauseStatus.APPROVED)])

    assert summary["ai_generated"] == 1
    assert summary["approved"] == 1
    assert summary["rejected"] == 0
