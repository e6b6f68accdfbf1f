"""
Shared test fixtures for the contract generation test suite.

Provides: clause/party factories, a mocked gateway, request discipline with
instant retries, in-memory session storage and an agent-free generation service.
"""

from unittest.mock import AsyncMock

import pytest

from api.security import StaticTokenProvider
from drafting.generation_service import GenerationService
from drafting.models import (
    Clause,
    ClauseStatus,
    MandatoryFields,
    PartyInfo,
    Session,
    SessionStatus,
)
from drafting.request_discipline import RequestDiscipline
from memory.session_service import InMemorySessionStore
from tools.template_catalog import TemplateCatalog


def make_clause(
    clause_id: str,
    status: ClauseStatus = ClauseStatus.AI_GENERATED,
    is_mandatory: bool = True,
    order: int = 0,
    content: str = "Clause text."
) -> Clause:
    return Clause(
        clause_id=clause_id,
        title=clause_id.replace("_", " ").title(),
        content=content,
        status=status,
        is_mandatory=is_mandatory,
        order=order,
    )


def make_party(external_id: str = "user-1", name: str = "Alice Smith") -> PartyInfo:
    return PartyInfo(
        external_id=external_id,
        name=name,
        email=f"{external_id}@example.com",
        phone="+1 555 0100",
        address="1 Main Street",
    )


def words(n: int) -> str:
    return " ".join(f"word{i}" for i in range(n))


@pytest.fixture
def auth():
    return StaticTokenProvider("test-token")


@pytest.fixture
def sleep():
    """Stand-in for asyncio.sleep so retry backoff never waits."""
    return AsyncMock()


@pytest.fixture
def discipline(auth, sleep):
    return RequestDiscipline(auth, sleep=sleep)


@pytest.fixture
def gateway():
    return AsyncMock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture(scope="session")
def catalog():
    return TemplateCatalog()


@pytest.fixture
def service(store, catalog):
    return GenerationService(store, catalog=catalog)


@pytest.fixture
def fields():
    return MandatoryFields(
        party1=make_party("user-1", "Alice Smith"),
        party2=make_party("user-2", "Bob Jones"),
        contract_details={"jurisdiction": "Delaware"},
    )


@pytest.fixture
def active_session():
    """Server-side session parked on step 3 of an NDA."""
    return Session(
        id="sess-1",
        current_step=3,
        session_status=SessionStatus.ACTIVE,
        completion_percentage=50.0,
        selected_template_id="nda_template",
        contract_type="nda",
        session_data={"step2_data": {"selected_template_id": "nda_template"}},
    )
