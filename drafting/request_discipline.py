"""Request discipline for gateway calls.

Every network-bound action goes through ``RequestDiscipline.call`` which
applies, in order: the busy guard for the action key, credential resolution,
a hard timeout, and retry with exponential backoff for idempotent reads.
User-driven lookups are additionally collapsed by ``Debouncer``.
"""

import asyncio
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, Set

import msgspec
from loguru import logger

from drafting.error_handling import (
    RequestInFlightError,
    RequestTimeoutError,
    RetryConfig,
    TransientError,
    UnauthenticatedError,
)

SEARCH_DEBOUNCE_SECONDS = 0.3

_credential: ContextVar[Optional[str]] = ContextVar("contract_credential", default=None)


def current_credential() -> Optional[str]:
    """Token resolved for the gateway call currently in flight."""
    return _credential.get()


class CallPolicy(msgspec.Struct, frozen=True, kw_only=True):
    """Timeout and retry parameters for one class of gateway call."""
    name: str
    timeout_seconds: float
    idempotent: bool = False
    max_attempts: int = 1
    initial_delay: float = 1.0
    exp_base: float = 2.0
    max_delay: float = 8.0

    @property
    def attempts(self) -> int:
        # Mutating calls are never repeated automatically
        return max(1, self.max_attempts) if self.idempotent else 1

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            attempts=self.attempts,
            exp_base=self.exp_base,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay
        )


GENERAL_POLICY = CallPolicy(name="general", timeout_seconds=60.0)
APPROVAL_POLICY = CallPolicy(name="approval", timeout_seconds=30.0)
READ_POLICY = CallPolicy(name="read", timeout_seconds=60.0, idempotent=True, max_attempts=3)


def policies_from_env() -> Dict[str, CallPolicy]:
    """Build the call policies, honouring timeout overrides from the environment."""
    general = float(os.getenv("GENERAL_TIMEOUT_SECONDS", GENERAL_POLICY.timeout_seconds))
    approval = float(os.getenv("APPROVAL_TIMEOUT_SECONDS", APPROVAL_POLICY.timeout_seconds))
    return {
        "general": msgspec.structs.replace(GENERAL_POLICY, timeout_seconds=general),
        "approval": msgspec.structs.replace(APPROVAL_POLICY, timeout_seconds=approval),
        "read": msgspec.structs.replace(READ_POLICY, timeout_seconds=general),
    }


class BusyGuard:
    """In-flight flags keyed by logical action."""

    def __init__(self):
        self._busy: Set[str] = set()

    def is_busy(self, key: str) -> bool:
        return key in self._busy

    @property
    def busy_keys(self) -> Set[str]:
        return set(self._busy)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        if key in self._busy:
            logger.info("Duplicate action refused while in flight", busy_key=key)
            raise RequestInFlightError(f"Action {key} is already in flight")
        self._busy.add(key)
        try:
            yield
        finally:
            self._busy.discard(key)


class Debouncer:
    """Collapse bursts of calls into one call made after a quiet period.

    Every caller in a burst awaits the same result, produced by calling
    ``func`` with the arguments of the last call in the burst.
    """

    def __init__(self, func: Callable[..., Awaitable[Any]], delay: float = SEARCH_DEBOUNCE_SECONDS):
        self._func = func
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None
        self._future: Optional[asyncio.Future] = None
        self._pending_args: tuple = ((), {})
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    async def __call__(self, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        self._pending_args = (args, kwargs)

        if self._handle is not None:
            self._handle.cancel()
        if self._future is None or self._future.done():
            self._future = loop.create_future()

        future = self._future
        self._handle = loop.call_later(self.delay, self._fire)
        return await asyncio.shield(future)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._future = None

    def _fire(self) -> None:
        self._handle = None
        future, self._future = self._future, None
        args, kwargs = self._pending_args
        task = asyncio.ensure_future(self._run(future, args, kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, future: asyncio.Future, args: tuple, kwargs: dict) -> None:
        try:
            result = await self._func(*args, **kwargs)
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)


class RequestDiscipline:
    """Apply busy guard, auth precondition, timeout and retry to gateway calls.

    Args:
        auth: AuthProvider exposing ``async current_token()``
        sleep: Awaitable used between retry attempts (injectable for tests)
    """

    def __init__(self, auth, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.auth = auth
        self.busy = BusyGuard()
        self._sleep = sleep

    def is_busy(self, key: str) -> bool:
        return self.busy.is_busy(key)

    async def call(
        self,
        policy: CallPolicy,
        operation: Callable[[], Awaitable[Any]],
        *,
        busy_key: Optional[str] = None
    ) -> Any:
        """Run ``operation`` under ``policy``.

        Raises:
            RequestInFlightError: ``busy_key`` is already in flight
            UnauthenticatedError: No credential could be resolved
            RequestTimeoutError: The last attempt exceeded the time bound
            NetworkError, GatewayError: The last attempt failed in transit
        """
        if busy_key is None:
            return await self._run_attempts(policy, operation)
        with self.busy.hold(busy_key):
            return await self._run_attempts(policy, operation)

    async def _resolve_credential(self) -> str:
        try:
            token = await self.auth.current_token()
        except UnauthenticatedError:
            raise
        except Exception as e:
            raise UnauthenticatedError(f"Credential refresh failed: {e}") from e
        if not token:
            raise UnauthenticatedError("No credential available")
        return token

    async def _run_attempts(self, policy: CallPolicy, operation: Callable[[], Awaitable[Any]]) -> Any:
        retry = policy.retry_config
        last_error: Optional[TransientError] = None

        for attempt in range(retry.attempts):
            token = await self._resolve_credential()
            reset_token = _credential.set(token)
            try:
                return await asyncio.wait_for(operation(), timeout=policy.timeout_seconds)
            except asyncio.TimeoutError:
                last_error = RequestTimeoutError(
                    f"{policy.name} call exceeded {policy.timeout_seconds}s",
                    retryable=policy.idempotent
                )
            except TransientError as e:
                e.retryable = policy.idempotent
                last_error = e
            finally:
                _credential.reset(reset_token)

            if attempt < retry.attempts - 1:
                delay = retry.calculate_delay(attempt)
                logger.warning(
                    f"Attempt {attempt + 1}/{retry.attempts} failed, retrying in {delay}s",
                    policy=policy.name,
                    error=str(last_error),
                    error_type=type(last_error).__name__
                )
                await self._sleep(delay)
            else:
                logger.warning(
                    f"Gateway call failed after {retry.attempts} attempt(s)",
                    policy=policy.name,
                    error=str(last_error),
                    error_type=type(last_error).__name__
                )

        raise last_error
