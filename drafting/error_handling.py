"""Error handling and retry configuration for the contract drafting system.

Provides the error taxonomy shared by the client core and the generation
service, the LLM retry decorator, and error handling decorators.
"""

from functools import wraps
from typing import Any, Callable, Optional, Type
import time
from loguru import logger


# Custom Exception Classes

class ContractDraftingError(Exception):
    """Base exception for all contract drafting errors.

    ``user_message`` is safe to show to the end user; ``retryable`` tells the
    caller whether the same action may simply be triggered again.
    """

    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str = "",
        user_message: Optional[str] = None,
        retryable: bool = False
    ):
        super().__init__(message or self.default_user_message)
        self.message = message or self.default_user_message
        self.user_message = user_message or self.message
        self.retryable = retryable


class ValidationError(ContractDraftingError):
    """Raised when a precondition for an action is not met."""
    default_user_message = "Some required information is missing."


class ConflictError(ContractDraftingError):
    """Raised when an action is not permitted in the current state."""
    default_user_message = "This action is not allowed right now."


class RequestInFlightError(ContractDraftingError):
    """Raised when the same action is already being processed."""
    default_user_message = "This request is already being processed."


class UnauthenticatedError(ContractDraftingError):
    """Raised when no valid credential can be resolved."""
    default_user_message = "Authentication required. Please log in again."


class TransientError(ContractDraftingError):
    """Base for failures of a gateway call that may succeed when repeated."""


class RequestTimeoutError(TransientError):
    """Raised when a gateway call exceeds its time bound."""
    default_user_message = (
        "The request timed out. This might be due to high server load. Please try again."
    )


class NetworkError(TransientError):
    """Raised on transport failures."""
    default_user_message = "Network error. Please check your connection and try again."


class GatewayError(TransientError):
    """Raised when the gateway responds with a structured failure."""

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        detail: Any = None,
        user_message: Optional[str] = None,
        retryable: bool = False
    ):
        super().__init__(message, user_message=user_message, retryable=retryable)
        self.status_code = status_code
        self.detail = detail if detail is not None else message


class NotFoundError(ContractDraftingError):
    """Raised when a session or clause does not exist."""
    default_user_message = "Session not found or expired."


class SessionError(ContractDraftingError):
    """Raised when session persistence fails."""


class AgentError(ContractDraftingError):
    """Raised when an AI agent cannot produce a usable result."""


class LLMError(AgentError):
    """Raised when LLM API calls fail."""


# Retry Configuration

class RetryConfig:
    """Configuration for retry logic with exponential backoff."""

    def __init__(
        self,
        attempts: int = 3,
        exp_base: float = 2,
        initial_delay: float = 1.0,
        max_delay: float = 60.0
    ):
        """Initialize retry configuration.

        Args:
            attempts: Maximum number of attempts
            exp_base: Base for exponential backoff calculation
            initial_delay: Initial delay in seconds
            max_delay: Maximum delay between retries in seconds
        """
        self.attempts = attempts
        self.exp_base = exp_base
        self.initial_delay = initial_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.initial_delay * (self.exp_base ** attempt)
        return min(delay, self.max_delay)


# Default retry configuration for Gemini API
GEMINI_RETRY_CONFIG = RetryConfig(
    attempts=3,
    exp_base=7,
    initial_delay=1.0,
    max_delay=60.0
)


def retry_with_backoff(
    config: RetryConfig = GEMINI_RETRY_CONFIG,
    exceptions: tuple[Type[Exception], ...] = (Exception,)
) -> Callable:
    """Decorator to retry a blocking function with exponential backoff.

    Used by the server-side agents around raw LLM calls. Client-side gateway
    calls go through ``RequestDiscipline`` instead.

    Args:
        config: Retry configuration
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(config.attempts):
                try:
                    return func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt < config.attempts - 1:
                        delay = config.calculate_delay(attempt)
                        logger.warning(
                            f"Attempt {attempt + 1}/{config.attempts} failed, retrying in {delay}s",
                            function=func.__name__,
                            error=str(e),
                            error_type=type(e).__name__
                        )
                        time.sleep(delay)
                    else:
                        logger.error(
                            f"All {config.attempts} attempts failed",
                            function=func.__name__,
                            error=str(e),
                            error_type=type(e).__name__
                        )

            raise last_exception

        return wrapper
    return decorator


def handle_errors(
    error_type: Type[ContractDraftingError],
    default_return: Any = None,
    reraise: bool = True
) -> Callable:
    """Decorator to handle errors and convert them to custom exception types.

    Args:
        error_type: Custom exception type to raise
        default_return: Default value to return on error (if not reraising)
        reraise: Whether to reraise the exception after logging

    Returns:
        Decorated function with error handling
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)

            except ContractDraftingError:
                # Already a custom exception, just reraise
                raise

            except Exception as e:
                logger.error(
                    f"Error in {func.__name__}",
                    error=str(e),
                    error_type=type(e).__name__
                )

                if reraise:
                    raise error_type(f"Error in {func.__name__}: {str(e)}") from e
                else:
                    return default_return

        return wrapper
    return decorator


def graceful_degradation(fallback_func: Optional[Callable] = None) -> Callable:
    """Decorator to provide graceful degradation on failure.

    Args:
        fallback_func: Optional fallback function to call on error

    Returns:
        Decorated function with graceful degradation
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            try:
                return func(*args, **kwargs)

            except Exception as e:
                logger.warning(
                    f"Function {func.__name__} failed, attempting graceful degradation",
                    error=str(e),
                    error_type=type(e).__name__
                )

                if fallback_func:
                    try:
                        return fallback_func(*args, **kwargs)
                    except Exception as fallback_error:
                        logger.error(
                            "Fallback function also failed",
                            error=str(fallback_error),
                            error_type=type(fallback_error).__name__
                        )
                        raise
                else:
                    return None

        return wrapper
    return decorator


# User-visible error display

ERROR_DISPLAY_SECONDS = 10.0


class ErrorNotice:
    """Last user-facing error, cleared automatically after a display window.

    Reporting a new error restarts the window, so the same failure can be
    surfaced again when the user re-triggers the action.
    """

    def __init__(
        self,
        display_seconds: float = ERROR_DISPLAY_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.display_seconds = display_seconds
        self._clock = clock
        self._error: Optional[ContractDraftingError] = None
        self._reported_at = 0.0

    def report(self, error: ContractDraftingError) -> None:
        self._error = error
        self._reported_at = self._clock()

    def clear(self) -> None:
        self._error = None

    @property
    def current(self) -> Optional[ContractDraftingError]:
        if self._error is None:
            return None
        if self._clock() - self._reported_at >= self.display_seconds:
            self._error = None
        return self._error

    @property
    def message(self) -> Optional[str]:
        error = self.current
        return error.user_message if error else None
