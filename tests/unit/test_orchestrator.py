import asyncio
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import msgspec
import pytest

from conftest import make_clause, make_party, words
from api.security import StaticTokenProvider
from drafting.error_handling import (
    ConflictError,
    ErrorNotice,
    NetworkError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from drafting.models import (
    AnalysisResult,
    ClauseApprovalResult,
    ClauseKind,
    ClauseStatus,
    CompletionResult,
    ContractPreview,
    MandatoryClausesResult,
    Session,
    SessionStatus,
    TemplateSuggestion,
)
from drafting.orchestrator import SessionOrchestrator
from memory.session_service import InMemorySessionStore


def suggestion(template_id, score):
    return TemplateSuggestion(template_id=template_id, template_name=template_id.title(), relevance_score=score)


@pytest.fixture
def orchestrator(gateway, auth, store, discipline):
    return SessionOrchestrator(
        gateway=gateway,
        auth=auth,
        store=store,
        party_directory=AsyncMock(),
        discipline=discipline,
        search_delay=0.01
    )


async def load_step3(orchestrator, store, session):
    store.put(session)
    await orchestrator.load(session.id)
    orchestrator.set_actor(make_party("user-1", "Alice Smith"))


async def test_nda_prompt_to_real_session(orchestrator, gateway):
    gateway.analyze_prompt.return_value = AnalysisResult(
        can_handle=True, suggested_templates=[suggestion("nda_template", 0.90)]
    )
    gateway.create_session.return_value = Session(
        id="sess-1", current_step=2, session_status=SessionStatus.ACTIVE, selected_template_id="nda_template"
    )

    await orchestrator.submit_prompt("I need an NDA for a partnership")
    placeholder_id = orchestrator.session.id

    assert orchestrator.current_step == 2
    assert orchestrator.session.is_placeholder

    orchestrator.select_template("nda_template")
    session = await orchestrator.create_session()

    assert session.id == "sess-1"
    assert orchestrator.session.id != placeholder_id
    assert not orchestrator.session.is_placeholder
    assert orchestrator.current_step == 2
    gateway.create_session.assert_awaited_once()


async def test_unsupported_prompt_stays_on_step1(orchestrator, gateway):
    gateway.analyze_prompt.return_value = AnalysisResult(can_handle=False, unsupported_message="Not a contract")

    with pytest.raises(ValidationError):
        await orchestrator.submit_prompt("Write me a poem about the sea")

    assert orchestrator.current_step == 1
    assert orchestrator.error_notice.message == "Not a contract"


async def test_visible_templates_use_threshold(orchestrator, gateway):
    gateway.analyze_prompt.return_value = AnalysisResult(can_handle=True, suggested_templates=[
        suggestion("a", 0.85), suggestion("b", 0.72), suggestion("c", 0.65), suggestion("d", 0.40),
    ])
    await orchestrator.analyze_prompt("I need an NDA for a partnership")

    assert [t.template_id for t in orchestrator.visible_templates()] == ["a", "b"]

    gateway.analyze_prompt.return_value = AnalysisResult(can_handle=True, suggested_templates=[
        suggestion("a", 0.69), suggestion("b", 0.5), suggestion("c", 0.3), suggestion("d", 0.1),
    ])
    await orchestrator.analyze_prompt("I need an NDA for a partnership")

    assert len(orchestrator.visible_templates()) == 4


def test_select_unknown_template_is_refused(orchestrator):
    orchestrator.steps.current_step = 2

    with pytest.raises(ValidationError):
        orchestrator.select_template("nda_template")


async def test_word_count_gate(orchestrator, gateway, store, active_session):
    await load_step3(orchestrator, store, active_session)
    gateway.generate_mandatory_clauses.return_value = MandatoryClausesResult(
        clauses=[make_clause("nda_parties"), make_clause("nda_term", order=1)]
    )

    assert orchestrator.set_explanation(words(199) + "   ") == 199
    assert not orchestrator.can_generate_clauses
    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.generate_mandatory_clauses()
    assert "Current: 199 words" in exc_info.value.user_message
    gateway.generate_mandatory_clauses.assert_not_called()

    orchestrator.set_explanation(words(200))
    assert orchestrator.can_generate_clauses
    clauses = await orchestrator.generate_mandatory_clauses()

    assert [c.clause_id for c in clauses] == ["nda_parties", "nda_term"]
    assert orchestrator.step_data(3).generated_clauses == clauses


async def test_generation_requires_first_party(orchestrator, gateway, store, active_session):
    store.put(active_session)
    await orchestrator.load(active_session.id)
    orchestrator.set_explanation(words(200))

    with pytest.raises(ValidationError):
        await orchestrator.generate_mandatory_clauses()
    with pytest.raises(ValidationError):
        orchestrator.set_party(1, make_party())


async def test_mandatory_reject_never_changes_status(orchestrator, gateway, store, active_session):
    await load_step3(orchestrator, store, active_session)
    orchestrator.engine().load([make_clause("nda_parties")])

    with pytest.raises(ConflictError):
        await orchestrator.reject_clause("nda_parties", kind=ClauseKind.MANDATORY)

    assert orchestrator.engine().get("nda_parties").status == ClauseStatus.AI_GENERATED
    gateway.approve_clause.assert_not_called()
    assert "cannot be rejected" in orchestrator.error_notice.message


async def test_step3_completion_follows_gateway_certificate(orchestrator, gateway, store, active_session):
    await load_step3(orchestrator, store, active_session)
    clauses = [make_clause("nda_parties"), make_clause("nda_term", order=1)]
    orchestrator.engine().load(clauses)

    gateway.approve_clause.return_value = ClauseApprovalResult(
        clause=msgspec.structs.replace(clauses[0], status=ClauseStatus.APPROVED)
    )
    await orchestrator.approve_clause("nda_parties")
    with pytest.raises(ValidationError):
        await orchestrator.apply_step_completion(3)

    gateway.approve_clause.return_value = ClauseApprovalResult(
        clause=msgspec.structs.replace(clauses[1], status=ClauseStatus.APPROVED),
        step3_completed=True
    )
    await orchestrator.approve_clause("nda_term")

    assert await orchestrator.apply_step_completion(3) == 4
    assert store.get("sess-1").current_step == 4
    assert store.get("sess-1").session_data["step3_data"]["step3_completed"] is True


async def test_actions_for_other_steps_are_refused(orchestrator, store, active_session):
    await load_step3(orchestrator, store, active_session)

    with pytest.raises(ValidationError):
        await orchestrator.generate_optional_clauses()
    with pytest.raises(ValidationError):
        await orchestrator.analyze_prompt("I need an NDA for a partnership")


async def test_load_unknown_session(orchestrator):
    with pytest.raises(NotFoundError):
        await orchestrator.load("missing")


async def test_load_without_store_reads_from_gateway(gateway, auth, discipline, active_session):
    orchestrator = SessionOrchestrator(gateway=gateway, auth=auth, discipline=discipline)
    gateway.get_session.return_value = active_session

    result = await orchestrator.load("sess-1")

    assert result.current_step == 3
    gateway.get_session.assert_awaited_once_with("sess-1")


async def test_expired_session_is_abandoned_on_load(orchestrator, store, active_session):
    expired = msgspec.structs.replace(active_session, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    store.put(expired)

    await orchestrator.load("sess-1")

    assert orchestrator.session.session_status == SessionStatus.ABANDONED
    assert store.get("sess-1").session_status == SessionStatus.ABANDONED
    with pytest.raises(ValidationError):
        await orchestrator.generate_mandatory_clauses()
    assert "expired" in orchestrator.error_notice.message


async def test_resume_restores_step_and_clauses(orchestrator, store, active_session):
    snapshot = msgspec.structs.replace(active_session, session_data={
        "step3_data": {
            "generated_clauses": [
                msgspec.to_builtins(make_clause("nda_parties", status=ClauseStatus.APPROVED)),
                msgspec.to_builtins(make_clause("nda_term", order=1)),
            ],
            "current_clause_index": 1,
        },
    })
    store.put(snapshot)
    orchestrator.steps.current_step = 5

    result = await orchestrator.load("sess-1")

    assert result.current_step == 3
    assert orchestrator.current_step == 3
    assert orchestrator.engine().current_clause.clause_id == "nda_term"
    assert orchestrator.engine().progress() == (1, 2)


async def test_go_back_is_local(orchestrator, store, active_session):
    await load_step3(orchestrator, store, active_session)

    assert orchestrator.go_back() == 2
    assert store.get("sess-1").current_step == 3


async def test_error_notice_clears_after_display_window(gateway, auth, discipline):
    now = [0.0]
    orchestrator = SessionOrchestrator(
        gateway=gateway,
        auth=auth,
        discipline=discipline,
        error_notice=ErrorNotice(display_seconds=10.0, clock=lambda: now[0])
    )
    gateway.analyze_prompt.side_effect = NetworkError("connection refused")

    with pytest.raises(NetworkError):
        await orchestrator.analyze_prompt("I need an NDA for a partnership")

    assert gateway.analyze_prompt.await_count == 3
    assert orchestrator.error_notice.message == "connection refused"
    now[0] = 10.0
    assert orchestrator.error_notice.message is None

    with pytest.raises(NetworkError):
        await orchestrator.analyze_prompt("I need an NDA for a partnership")
    assert orchestrator.error_notice.current is not None


async def test_search_party_uses_directory(orchestrator):
    orchestrator.party_directory.lookup.return_value = make_party("user-2", "Bob Jones")

    party = await orchestrator.search_party(" user-2 ")

    assert party.name == "Bob Jones"
    orchestrator.party_directory.lookup.assert_awaited_once_with("user-2")
    assert await orchestrator.search_party("   ") is None


class SlowStore(InMemorySessionStore):
    def get(self, session_id):
        time.sleep(0.2)
        return super().get(session_id)


class FailingPatchStore(InMemorySessionStore):
    def patch(self, session_id, changes):
        raise NetworkError("store unreachable")


async def test_load_needs_a_credential(gateway, store, active_session):
    store.put(active_session)
    orchestrator = SessionOrchestrator(gateway=gateway, auth=StaticTokenProvider(None), store=store)

    with pytest.raises(UnauthenticatedError):
        await orchestrator.load("sess-1")

    assert orchestrator.session is None
    assert orchestrator.current_step == 1


async def test_store_reads_run_off_the_event_loop(gateway, auth, discipline, active_session):
    store = SlowStore()
    store.put(active_session)
    orchestrator = SessionOrchestrator(gateway=gateway, auth=auth, store=store, discipline=discipline)
    ticks = []

    async def ticker():
        while True:
            ticks.append(time.monotonic())
            await asyncio.sleep(0.01)

    task = asyncio.create_task(ticker())
    load = asyncio.create_task(orchestrator.load("sess-1"))
    await asyncio.sleep(0.05)
    assert orchestrator.is_busy("load")
    result = await load
    task.cancel()

    assert result.current_step == 3
    assert len(ticks) >= 5


async def test_completion_survives_a_failing_store(gateway, auth, discipline, active_session):
    store = FailingPatchStore()
    preview = ContractPreview(html_content="<article/>", legal_compliance_score=85.0)
    on_step5 = msgspec.structs.replace(active_session, current_step=5, session_data={
        "step2_data": {"selected_template_id": "nda_template"},
        "step5_data": {"contract_preview": msgspec.to_builtins(preview)},
    })
    store.put(on_step5)
    orchestrator = SessionOrchestrator(gateway=gateway, auth=auth, store=store, discipline=discipline)
    await orchestrator.load("sess-1")
    gateway.complete_session.return_value = CompletionResult(
        session=msgspec.structs.replace(
            on_step5, session_status=SessionStatus.COMPLETED, completion_percentage=100.0
        ),
        final_contract={"title": "Non-Disclosure Agreement"}
    )

    final_contract = await orchestrator.complete()

    assert final_contract == {"title": "Non-Disclosure Agreement"}
    assert orchestrator.is_complete
    assert orchestrator.session.session_status == SessionStatus.COMPLETED
    assert orchestrator.step_data(5).final_contract == final_contract
    with pytest.raises(ValidationError):
        await orchestrator.complete()
    assert orchestrator.error_notice.message == "This contract has already been completed."
    gateway.complete_session.assert_awaited_once()
