"""Output formatting utilities for CLI commands.

Status lines go to stdout except errors, which go to stderr so that
``--json`` output stays machine-readable.
"""

from typing import Any

import click


def _emit(symbol: str, message: str, *, err: bool = False, **style: Any) -> None:
    click.secho(f"{symbol} {message}", err=err, **style)


def success(message: str) -> None:
    """Print a success message in green."""
    _emit("✓", message, fg="green")


def error(message: str) -> None:
    """Print an error message in red on stderr."""
    _emit("✗", message, err=True, fg="red")


def warning(message: str) -> None:
    _emit("⚠", message, fg="yellow")


def info(message: str) -> None:
    _emit("ℹ", message, fg="blue")


def header(message: str) -> None:
    """Print a header line in cyan bold."""
    click.secho(f"\n{message}", fg="cyan", bold=True)


def key_value(key: str, value: object, width: int = 28) -> None:
    """Print an aligned ``key: value`` line."""
    click.echo(f"  {key + ':':<{width}} {value}")
