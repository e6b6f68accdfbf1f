from datetime import datetime, timedelta, timezone

import pytest

from drafting.error_handling import NotFoundError, ValidationError
from drafting.models import Session, SessionStatus, as_utc, utc_now
from memory.session_service import (
    DatabaseSessionService,
    InMemorySessionStore,
    apply_patch,
    create_session_service,
    database_path_from_url,
)


@pytest.fixture
def db(tmp_path):
    return DatabaseSessionService(db_path=str(tmp_path / "sessions.db"))


def make_session(session_id="sess-1", **fields):
    defaults = dict(
        current_step=2,
        session_status=SessionStatus.ACTIVE,
        selected_template_id="nda_template",
        created_at=datetime(2026, 1, 1, 9, 0),
        expires_at=datetime(2026, 1, 2, 9, 0),
        session_data={"step1_data": {"user_prompt": "I need an NDA for a partnership"}},
    )
    defaults.update(fields)
    return Session(id=session_id, **defaults)


def test_apply_patch_merges_session_data():
    session = make_session()

    patched = apply_patch(
        session,
        {"current_step": 3, "session_data": {"step2_data": {"selected_template_id": "nda_template"}}},
        now=datetime(2026, 1, 1, 10, 0)
    )

    assert patched.current_step == 3
    assert set(patched.session_data) == {"step1_data", "step2_data"}
    assert patched.updated_at == datetime(2026, 1, 1, 10, 0)
    assert session.current_step == 2


def test_apply_patch_rejects_unknown_and_immutable_fields():
    with pytest.raises(ValidationError):
        apply_patch(make_session(), {"id": "other"})
    with pytest.raises(ValidationError):
        apply_patch(make_session(), {"favourite_colour": "blue"})
    with pytest.raises(ValidationError):
        apply_patch(make_session(), {"current_step": "three"})


def test_in_memory_store_returns_copies():
    store = InMemorySessionStore()
    store.put(make_session())

    first = store.get("sess-1")
    first.session_data["step1_data"]["user_prompt"] = "changed"

    assert store.get("sess-1").session_data["step1_data"]["user_prompt"] == "I need an NDA for a partnership"
    assert store.get("missing") is None
    with pytest.raises(NotFoundError):
        store.patch("missing", {"current_step": 3})


def test_database_round_trip(db):
    db.put(make_session())

    loaded = db.get("sess-1")

    assert loaded == make_session()
    assert db.get("missing") is None


def test_database_patch_and_events(db):
    db.put(make_session())

    patched = db.patch("sess-1", {"current_step": 3, "completion_percentage": 50})
    db.log_event("sess-1", "clause_approved", {"clause_id": "nda_parties"})

    assert db.get("sess-1").current_step == 3
    assert patched.completion_percentage == 50
    assert [e["event_type"] for e in db.get_events("sess-1")] == [
        "session_saved", "session_saved", "session_patched", "clause_approved"
    ]
    with pytest.raises(NotFoundError):
        db.patch("missing", {"current_step": 3})


def test_list_and_delete_sessions(db):
    db.put(make_session("sess-1", user_id="alice"))
    db.put(make_session("sess-2", user_id="bob"))

    assert [s["session_id"] for s in db.list_sessions(user_id="alice")] == ["sess-1"]
    assert len(db.list_sessions()) == 2
    assert db.delete_session("sess-1")
    assert not db.delete_session("sess-1")
    assert db.get_events("sess-1") == []


def test_expire_sessions(db):
    db.put(make_session("old", expires_at=datetime(2026, 1, 1, 10, 0)))
    db.put(make_session("done", expires_at=datetime(2026, 1, 1, 10, 0), session_status=SessionStatus.COMPLETED))
    db.put(make_session("fresh", expires_at=datetime(2026, 1, 1, 10, 0) + timedelta(days=1)))

    assert db.expire_sessions(now=datetime(2026, 1, 1, 12, 0)) == 1
    assert db.get("old").session_status == SessionStatus.ABANDONED
    assert db.get("done").session_status == SessionStatus.COMPLETED
    assert db.get("fresh").session_status == SessionStatus.ACTIVE
    assert db.expire_sessions(now=datetime(2026, 1, 1, 12, 0)) == 0


def test_create_session_service_reads_database_url(monkeypatch, tmp_path):
    path = tmp_path / "env.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{path}")

    service = create_session_service()

    assert service.db_path == str(path)
    assert database_path_from_url("plain.db") == "plain.db"


@pytest.mark.parametrize("expires_at, now, expired", [
    (datetime(2026, 1, 1, 10, 0), datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc), True),
    (datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc), datetime(2026, 1, 1, 9, 0), False),
    (datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))), datetime(2026, 1, 1, 10, 30), True),
])
def test_expiry_compares_naive_and_aware_times(expires_at, now, expired):
    assert make_session(expires_at=expires_at).is_expired(now) is expired


def test_utc_now_is_timezone_aware():
    now = utc_now()

    assert now.tzinfo is not None
    assert as_utc(datetime(2026, 1, 1, 10, 0)) == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert make_session(expires_at=now + timedelta(hours=1)).is_expired() is False


def test_patch_stamps_aware_timestamps_by_default():
    patched = apply_patch(make_session(), {"current_step": 4})

    assert patched.updated_at.tzinfo is not None
