"""Logging configuration using Loguru for structured logging.

Provides session-aware logging with JSON output, a dedicated gateway-call
log, rotation and retention policies.
"""

import sys
import time
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional
from loguru import logger


def setup_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    rotation: str = "100 MB",
    retention: str = "30 days",
    compression: str = "zip"
) -> None:
    """Configure Loguru logging with console, plain, JSON and error sinks.

    Args:
        log_dir: Directory for log files
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        rotation: When to rotate log files
        retention: How long to keep old logs
        compression: Compression format for rotated logs
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger.remove()

    # Console handler with colored output
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        level=level,
        colorize=True
    )

    logger.add(
        log_path / "contract_drafting_{time}.log",
        format="{time} | {level} | {name}:{function}:{line} | {message}",
        level=level,
        rotation=rotation,
        retention=retention,
        compression=compression,
        serialize=False
    )

    # JSON structured log for parsing and analysis
    logger.add(
        log_path / "contract_drafting_json_{time}.log",
        level=level,
        rotation=rotation,
        retention=retention,
        compression=compression,
        serialize=True
    )

    def gateway_format(record):
        session_id = record["extra"].get("session_id", "-")
        operation = record["extra"].get("gateway_operation", "unknown")
        return f"{record['time']} | {record['level'].name} | {session_id} | {operation} | {record['message']}\n"

    logger.add(
        log_path / "gateway_{time}.log",
        format=gateway_format,
        level="INFO",
        rotation=rotation,
        retention=retention,
        compression=compression,
        filter=lambda record: "gateway_operation" in record["extra"]
    )

    # Error-only log file
    logger.add(
        log_path / "errors_{time}.log",
        format="{time} | {level} | {name}:{function}:{line} | {message}",
        level="ERROR",
        rotation=rotation,
        retention=retention,
        compression=compression
    )

    logger.info("Logging system initialized", log_dir=log_dir, level=level)


def get_session_logger(session_id: Optional[str], component: Optional[str] = None):
    """Get a logger bound to a specific session and optionally a component.

    Args:
        session_id: Session identifier (placeholder ids are fine)
        component: Optional agent or component name

    Returns:
        Logger instance with session context
    """
    context = {"session_id": session_id or "-"}
    if component:
        context["agent_name"] = component
    return logger.bind(**context)


def log_agent_execution(agent_name: str) -> Callable:
    """Decorator to log agent method execution with timing.

    Args:
        agent_name: Name of the agent being executed

    Returns:
        Decorated function with logging
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            session_id = kwargs.get("session_id", "unknown")
            agent_logger = get_session_logger(session_id, agent_name)

            agent_logger.info(f"Starting {agent_name} execution", function=func.__name__)

            try:
                start_time = time.time()
                result = func(*args, **kwargs)
                duration = time.time() - start_time

                agent_logger.info(
                    f"{agent_name} completed successfully",
                    function=func.__name__,
                    duration_seconds=round(duration, 3)
                )
                return result

            except Exception as e:
                agent_logger.error(
                    f"{agent_name} failed with error",
                    function=func.__name__,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise

        return wrapper
    return decorator


def log_gateway_call(operation: str, session_scoped: bool = True) -> Callable:
    """Decorator to log an async gateway operation with timing.

    The session id is taken from the ``session_id`` keyword or the first
    positional argument after ``self`` when it is a string.

    Args:
        operation: Gateway operation name
        session_scoped: False when the call has no session id argument

    Returns:
        Decorated coroutine function with logging
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            session_id = kwargs.get("session_id")
            if session_id is None and session_scoped and len(args) > 1 and isinstance(args[1], str):
                session_id = args[1]
            call_logger = get_session_logger(session_id).bind(gateway_operation=operation)

            call_logger.debug(f"Gateway call {operation} started")
            start_time = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                call_logger.warning(
                    f"Gateway call {operation} failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_seconds=round(time.monotonic() - start_time, 3)
                )
                raise

            call_logger.info(
                f"Gateway call {operation} completed",
                duration_seconds=round(time.monotonic() - start_time, 3)
            )
            return result

        return wrapper
    return decorator
