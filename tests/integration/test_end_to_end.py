"""
End-to-end workflow: SessionOrchestrator driving the in-process GenerationService.

Both share one session store, the way the client and the API share the
session table in a deployment.
"""

import pytest

from conftest import make_party, words
from drafting.error_handling import ValidationError
from drafting.generation_service import GenerationService
from drafting.models import ClauseKind, ClauseStatus, CustomClauseSpec, SessionStatus
from drafting.orchestrator import SessionOrchestrator
from memory.party_registry import PartyRegistry

PROMPT = "I need an NDA for a partnership"


@pytest.fixture
def registry(tmp_path):
    registry = PartyRegistry(str(tmp_path / "parties.db"))
    registry.register(make_party("user-2", "Bob Jones"))
    return registry


@pytest.fixture
def backend(store, catalog, registry):
    return GenerationService(store, catalog=catalog, party_registry=registry)


def new_orchestrator(backend, auth, store, discipline):
    return SessionOrchestrator(
        gateway=backend,
        auth=auth,
        store=store,
        party_directory=backend,
        discipline=discipline,
        search_delay=0.01
    )


@pytest.fixture
def orchestrator(backend, auth, store, discipline):
    return new_orchestrator(backend, auth, store, discipline)


async def reach_step3(orchestrator):
    await orchestrator.submit_prompt(PROMPT)
    assert "nda_template" in [t.template_id for t in orchestrator.visible_templates()]
    orchestrator.select_template("nda_template")
    assert await orchestrator.apply_step_completion(2) == 3

    orchestrator.set_actor(make_party("user-1", "Alice Smith"))
    counterparty = await orchestrator.search_party("user-2")
    orchestrator.set_party(2, counterparty)
    orchestrator.set_contract_detail("jurisdiction", "Delaware")
    orchestrator.set_explanation(words(200))
    return await orchestrator.generate_mandatory_clauses()


async def test_complete_nda_workflow(orchestrator, store):
    mandatory = await reach_step3(orchestrator)
    session_id = orchestrator.session.id
    assert len(mandatory) == 5
    assert store.get(session_id).current_step == 3

    for clause in mandatory:
        await orchestrator.approve_clause(clause.clause_id)
    assert orchestrator.engine(ClauseKind.MANDATORY).gateway_certified
    assert await orchestrator.apply_step_completion(3) == 4
    assert store.get(session_id).completion_percentage == 75.0

    optional = await orchestrator.generate_optional_clauses()
    assert len(optional) == 3
    await orchestrator.approve_clause(optional[0].clause_id, ClauseKind.OPTIONAL)
    await orchestrator.reject_clause(optional[1].clause_id, ClauseKind.OPTIONAL)
    await orchestrator.approve_clause(optional[2].clause_id, ClauseKind.OPTIONAL)

    custom = await orchestrator.generate_custom_clauses([
        CustomClauseSpec(title="Audit Rights", description="Either party may audit compliance once a year."),
    ])
    await orchestrator.approve_clause(custom[0].clause_id, ClauseKind.CUSTOM)
    assert await orchestrator.apply_step_completion(4) == 5

    preview = await orchestrator.generate_preview()
    assert preview.legal_compliance_score == 85.0
    assert "Bob Jones" in preview.final_contract_text

    final_contract = await orchestrator.complete()

    assert orchestrator.is_complete
    assert orchestrator.completion_percentage == 100
    assert len(final_contract["approved_clause_ids"]) == 8
    assert optional[1].clause_id not in final_contract["approved_clause_ids"]
    assert final_contract["review_data"]["legal_compliance_score"] == 85.0

    persisted = store.get(session_id)
    assert persisted.session_status == SessionStatus.COMPLETED
    assert persisted.current_step == 5
    assert persisted.completion_percentage == 100.0


async def test_resume_mid_review(orchestrator, backend, auth, store, discipline):
    mandatory = await reach_step3(orchestrator)
    session_id = orchestrator.session.id
    await orchestrator.approve_clause(mandatory[0].clause_id)
    await orchestrator.approve_clause(mandatory[1].clause_id)

    resumed = new_orchestrator(backend, auth, store, discipline)
    result = await resumed.load(session_id)

    assert result.current_step == 3
    engine = resumed.engine(ClauseKind.MANDATORY)
    assert [c.status for c in engine.clauses[:3]] == [
        ClauseStatus.APPROVED, ClauseStatus.APPROVED, ClauseStatus.AI_GENERATED,
    ]

    await resumed.refresh_clauses()

    assert engine.current_clause_index == 2
    assert engine.progress() == (2, 5)
    assert not engine.all_processed()


async def test_reworked_mandatory_clause_after_going_back(orchestrator, store):
    mandatory = await reach_step3(orchestrator)
    session_id = orchestrator.session.id
    for clause in mandatory:
        await orchestrator.approve_clause(clause.clause_id)
    assert await orchestrator.apply_step_completion(3) == 4

    assert orchestrator.go_back() == 3
    first = mandatory[0].clause_id
    orchestrator.begin_edit(first)
    await orchestrator.reanalyze_clause(first, modifications="Name each party's affiliates as well")

    assert store.get(session_id).current_step == 4
    assert orchestrator.current_step == 3
    assert orchestrator.engine(ClauseKind.MANDATORY).get(first).status == ClauseStatus.REGENERATED
    with pytest.raises(ValidationError):
        await orchestrator.apply_step_completion(3)
    with pytest.raises(ValidationError):
        await orchestrator.generate_optional_clauses()

    await orchestrator.approve_clause(first)
    assert await orchestrator.apply_step_completion(3) == 4
