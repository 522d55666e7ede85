"""Logging infrastructure.

Provides structured logging with:
- JSONL format for log aggregation
- Automatic context injection (message_id, source_queue, handler, ...)
- QueueHandler + QueueListener for non-blocking I/O
- OpenTelemetry trace correlation

Basic usage:
    from deadletter_service.infra.logging import set_log_context
    import logging

    logger = logging.getLogger(__name__)

    set_log_context(message_id="7c1d...", source_queue="users-events")
    logger.info("Processing message")  # includes message_id and source_queue
"""

from deadletter_service.infra.logging.config import configure_logging, setup_logging, shutdown
from deadletter_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    log_context,
    set_log_context,
)
from deadletter_service.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
