"""CLI command modules."""

from deadletter_service.cli.commands import dlq

__all__ = ["dlq"]
