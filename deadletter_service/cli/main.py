"""Main CLI entry point for dead-letter-service management commands."""

import click

from deadletter_service.cli.commands import dlq
from deadletter_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="1.0.0", prog_name="deadletter-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Dead-letter Service CLI - Operate failed-message queues.

    \b
    Command Groups:
      dlq        Dead-letter queue inspection and recovery

    \b
    Quick Start:
      deadletter-service dlq check                      # Validate configuration
      deadletter-service dlq ensure                     # Create dead-letter queues
      deadletter-service dlq stats                      # Queue depths
      deadletter-service dlq list dlq.users-events -n 10
      deadletter-service dlq reprocess dlq.users-events <message-id>
    """
    ctx.ensure_object(dict)


cli.add_command(dlq.dlq)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
