"""CLI utilities for running async operations and formatting output."""

from deadletter_service.cli.utils.async_runner import coro
from deadletter_service.cli.utils.formatters import (
    error,
    header,
    info,
    key_value,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "header",
    "info",
    "key_value",
    "success",
    "warning",
]
