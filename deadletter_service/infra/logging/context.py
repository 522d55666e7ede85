"""Context management for structured logging.

Fields set here are injected into every log record emitted by the current
asyncio task (ContextVar copies are task-local), so a consumer can set
``message_id``/``source_queue`` once and every retry, dead-letter and
notification log line carries them.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        set_log_context(message_id="7c1d...", source_queue="users-events")
        logger.info("Processing message")  # includes both fields
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Remove all logging context for the current task."""
    _log_context.set({})


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields to the logging context for the duration of a block.

    The previous context is restored on exit, including on error.

    Example:
        with log_context(handler="UserCreatedHandler", attempt=2):
            await handler(message)
    """
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


class ContextInjectingFilter(logging.Filter):
    """Logging filter that copies the log context onto each LogRecord.

    Installed on the root QueueHandler by configure_logging(); existing record
    attributes (including ``extra=`` fields) are never overwritten.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


__all__ = [
    "ContextInjectingFilter",
    "clear_log_context",
    "get_log_context",
    "log_context",
    "set_log_context",
]
