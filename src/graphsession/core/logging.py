"""Structured logging configuration for graphsession.

Uses structlog for JSON (or console) logs to stdout. Every event emitted during
a sign-in attempt carries an auth_attempt_id so silent, interactive and
device-code steps of one attempt can be correlated.

Usage:
    from graphsession.core.logging import get_logger, bind_auth_attempt

    logger = get_logger(__name__)

    with bind_auth_attempt():
        logger.info("Interactive sign-in started")
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog

_auth_attempt_id: ContextVar[str | None] = ContextVar("auth_attempt_id", default=None)


def set_auth_attempt_id(attempt_id: str | None) -> None:
    """Set the sign-in attempt correlation ID for the current context."""
    _auth_attempt_id.set(attempt_id)


def get_auth_attempt_id() -> str | None:
    """Get the current sign-in attempt correlation ID, if set."""
    return _auth_attempt_id.get()


@contextmanager
def bind_auth_attempt(attempt_id: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of one sign-in attempt.

    Nested attempts (e.g. the interactive fallback started from
    acquire_token_for_current_user) reuse the outer ID.

    Args:
        attempt_id: Explicit ID to use; a new UUID is generated when omitted

    Yields:
        The active correlation ID
    """
    current = _auth_attempt_id.get()
    if current is not None:
        yield current
        return

    token = _auth_attempt_id.set(attempt_id or str(uuid.uuid4()))
    try:
        yield _auth_attempt_id.get()  # type: ignore[misc]
    finally:
        _auth_attempt_id.reset(token)


def add_auth_attempt_id(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Structlog processor to add the sign-in attempt ID to log entries."""
    attempt_id = _auth_attempt_id.get()
    if attempt_id is not None:
        event_dict["auth_attempt_id"] = attempt_id
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable format
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # MSAL logs every HTTP round trip at DEBUG, including token endpoints
    logging.getLogger("msal").setLevel(max(logging.INFO, getattr(logging, log_level.upper())))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        add_auth_attempt_id,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        A structlog BoundLogger instance
    """
    return structlog.get_logger(name)
