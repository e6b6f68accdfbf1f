import asyncio
from unittest.mock import AsyncMock

import pytest

from api.security import StaticTokenProvider
from drafting.error_handling import (
    GatewayError,
    NetworkError,
    RequestInFlightError,
    RequestTimeoutError,
    UnauthenticatedError,
)
from drafting.request_discipline import (
    GENERAL_POLICY,
    READ_POLICY,
    CallPolicy,
    Debouncer,
    RequestDiscipline,
    current_credential,
    policies_from_env,
)


async def test_idempotent_call_retries_with_backoff(discipline, sleep):
    operation = AsyncMock(side_effect=[NetworkError("reset"), GatewayError("busy", status_code=503), "ok"])

    result = await discipline.call(READ_POLICY, operation)

    assert result == "ok"
    assert operation.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


async def test_mutating_call_is_not_retried(discipline, sleep):
    operation = AsyncMock(side_effect=NetworkError("reset"))

    with pytest.raises(NetworkError) as exc_info:
        await discipline.call(GENERAL_POLICY, operation)

    assert operation.await_count == 1
    assert exc_info.value.retryable is False
    sleep.assert_not_called()


async def test_exhausted_read_is_marked_retryable(discipline):
    operation = AsyncMock(side_effect=NetworkError("reset"))

    with pytest.raises(NetworkError) as exc_info:
        await discipline.call(READ_POLICY, operation)

    assert exc_info.value.retryable is True
    assert operation.await_count == READ_POLICY.max_attempts


async def test_call_exceeding_bound_times_out(discipline):
    async def hang():
        await asyncio.sleep(1)

    with pytest.raises(RequestTimeoutError):
        await discipline.call(CallPolicy(name="quick", timeout_seconds=0.05), hang)


async def test_missing_credential_fails_before_the_call():
    operation = AsyncMock()
    discipline = RequestDiscipline(StaticTokenProvider(None), sleep=AsyncMock())

    with pytest.raises(UnauthenticatedError):
        await discipline.call(READ_POLICY, operation)

    operation.assert_not_called()


async def test_failing_auth_provider_maps_to_unauthenticated():
    auth = AsyncMock()
    auth.current_token.side_effect = RuntimeError("refresh endpoint down")
    discipline = RequestDiscipline(auth, sleep=AsyncMock())

    with pytest.raises(UnauthenticatedError):
        await discipline.call(GENERAL_POLICY, AsyncMock())


async def test_credential_is_bound_only_during_the_call(discipline):
    seen = []

    async def operation():
        seen.append(current_credential())
        return None

    await discipline.call(GENERAL_POLICY, operation)

    assert seen == ["test-token"]
    assert current_credential() is None


async def test_busy_key_refuses_concurrent_duplicate(discipline):
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "done"

    first = asyncio.create_task(discipline.call(GENERAL_POLICY, slow, busy_key="analyze"))
    await asyncio.sleep(0)

    assert discipline.is_busy("analyze")
    with pytest.raises(RequestInFlightError):
        await discipline.call(GENERAL_POLICY, slow, busy_key="analyze")

    release.set()
    assert await first == "done"
    assert not discipline.is_busy("analyze")


async def test_debouncer_collapses_burst_into_last_call():
    lookup = AsyncMock(side_effect=lambda value: f"found {value}")
    debounced = Debouncer(lookup, delay=0.01)

    results = await asyncio.gather(debounced("a"), debounced("al"), debounced("ali"))

    assert results == ["found ali"] * 3
    lookup.assert_awaited_once_with("ali")
    assert not debounced.pending


async def test_debouncer_propagates_errors():
    lookup = AsyncMock(side_effect=NetworkError("down"))
    debounced = Debouncer(lookup, delay=0.01)

    with pytest.raises(NetworkError):
        await debounced("alice")


def test_policies_from_env_override_timeouts(monkeypatch):
    monkeypatch.setenv("GENERAL_TIMEOUT_SECONDS", "5")
    monkeypatch.delenv("APPROVAL_TIMEOUT_SECONDS", raising=False)

    policies = policies_from_env()

    assert policies["general"].timeout_seconds == 5.0
    assert policies["read"].timeout_seconds == 5.0
    assert policies["approval"].timeout_seconds == 30.0
    assert policies["read"].attempts == 3
    assert policies["approval"].attempts == 1
