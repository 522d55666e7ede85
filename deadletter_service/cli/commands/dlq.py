"""Dead-letter queue management commands."""

import json
import sys
from typing import NoReturn

import click

from deadletter_service.cli.utils import coro, error, header, info, key_value, success, warning
from deadletter_service.core.exceptions import AppException
from deadletter_service.core.settings import BackendKind
from deadletter_service.infra.messaging.dlq import create_dead_letter_service


def _backend(ctx: click.Context) -> str | None:
    return ctx.obj.get("backend") if ctx.obj else None


def _fail(message: str, exc: AppException) -> NoReturn:
    """Report an application error with its problem document and exit 1."""
    error(f"{message}: {exc.detail}")
    click.echo(json.dumps(exc.to_dict(), default=str), err=True)
    sys.exit(1)


@click.group(name="dlq")
@click.option(
    "--backend",
    type=click.Choice([kind.value for kind in BackendKind]),
    default=None,
    help="Backend to use (default: DLQ_BACKEND or derived from APP_ENVIRONMENT)",
)
@click.pass_context
def dlq(ctx: click.Context, backend: str | None) -> None:
    """Dead-letter queue inspection and recovery."""
    ctx.ensure_object(dict)
    ctx.obj["backend"] = backend


@dlq.command(name="list")
@click.argument("queue_name")
@click.option("--max-count", "-n", default=50, show_default=True, help="Maximum messages to show")
@click.option("--json", "as_json", is_flag=True, help="Print envelopes as JSON lines")
@click.pass_context
@coro
async def list_messages(ctx: click.Context, queue_name: str, max_count: int, as_json: bool) -> None:
    """List messages in a dead-letter queue without removing them."""
    try:
        async with create_dead_letter_service(_backend(ctx)) as service:
            messages = await service.list_dead_letter_messages(queue_name, max_count)
    except AppException as e:
        _fail(f"Failed to list {queue_name}", e)

    if as_json:
        for envelope in messages:
            click.echo(envelope.to_json())
        return

    if not messages:
        info(f"No messages in {queue_name}")
        return

    header(f"{len(messages)} message(s) in {queue_name}")
    for envelope in messages:
        click.echo(f"\n  {envelope.message_id}")
        key_value("type", envelope.message_type)
        key_value("source queue", envelope.source_queue)
        key_value("attempts", envelope.attempt_count)
        key_value("first attempt", envelope.first_attempt_at.isoformat())
        key_value("last attempt", envelope.last_attempt_at.isoformat())
        key_value("last failure", envelope.last_failure_reason[:120])


@dlq.command()
@click.argument("queue_name")
@click.argument("message_id")
@click.pass_context
@coro
async def reprocess(ctx: click.Context, queue_name: str, message_id: str) -> None:
    """Replay the head message of QUEUE_NAME to its source queue if it is MESSAGE_ID."""
    try:
        async with create_dead_letter_service(_backend(ctx)) as service:
            done = await service.reprocess_dead_letter_message(queue_name, message_id)
    except AppException as e:
        _fail(f"Failed to reprocess {message_id}", e)

    if done:
        success(f"Reprocessed {message_id} from {queue_name}")
    else:
        warning(f"{message_id} is not at the head of {queue_name}; nothing reprocessed")
        sys.exit(2)


@dlq.command()
@click.argument("queue_name")
@click.argument("message_id")
@click.option("--force", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
@coro
async def purge(ctx: click.Context, queue_name: str, message_id: str, force: bool) -> None:
    """Permanently remove the head message of QUEUE_NAME if it is MESSAGE_ID."""
    if not force and not click.confirm(f"Permanently delete {message_id} from {queue_name}?"):
        info("Purge cancelled")
        return

    try:
        async with create_dead_letter_service(_backend(ctx)) as service:
            done = await service.purge_dead_letter_message(queue_name, message_id)
    except AppException as e:
        _fail(f"Failed to purge {message_id}", e)

    if done:
        success(f"Purged {message_id} from {queue_name}")
    else:
        warning(f"{message_id} is not at the head of {queue_name}; nothing purged")
        sys.exit(2)


@dlq.command()
@click.option("--json", "as_json", is_flag=True, help="Print statistics as JSON")
@click.pass_context
@coro
async def stats(ctx: click.Context, as_json: bool) -> None:
    """Show dead-letter queue depths and sampled failure types."""
    try:
        async with create_dead_letter_service(_backend(ctx)) as service:
            statistics = await service.get_dead_letter_statistics()
    except AppException as e:
        _fail("Failed to collect statistics", e)

    if as_json:
        click.echo(statistics.model_dump_json(indent=2))
        return

    header("Dead-letter statistics")
    key_value("total messages", statistics.total_dead_letter_messages)
    key_value("last updated", statistics.last_updated.isoformat())

    if statistics.messages_by_queue:
        header("By queue")
        for queue_name, depth in sorted(statistics.messages_by_queue.items()):
            oldest = statistics.oldest_message_by_queue.get(queue_name)
            suffix = f" (oldest {oldest.isoformat()})" if oldest else ""
            key_value(queue_name, f"{depth}{suffix}", width=40)

    if statistics.messages_by_exception_type:
        header("By exception type (sampled)")
        for exception_type, count in sorted(
            statistics.messages_by_exception_type.items(),
            key=lambda item: item[1],
            reverse=True,
        ):
            key_value(exception_type, count, width=40)


@dlq.command()
@click.pass_context
@coro
async def check(ctx: click.Context) -> None:
    """Validate the dead-letter configuration."""
    try:
        async with create_dead_letter_service(_backend(ctx)) as service:
            report = service.validate_configuration()
    except (AppException, ValueError) as e:
        error(f"Dead-letter configuration is invalid: {e}")
        sys.exit(1)

    header("Dead-letter configuration")
    key_value("backend", report["backend"])
    key_value("max retry attempts", report["max_retry_attempts"])
    key_value("first retry delay (s)", report["retry_delay_seconds"])
    key_value("retries sample error", report["should_retry"])
    for queue_name in report["known_queues"]:
        key_value("dead-letter queue", queue_name)
    success("Configuration is valid")


@dlq.command()
@click.pass_context
@coro
async def ensure(ctx: click.Context) -> None:
    """Create the dead-letter queue for every configured source queue."""
    try:
        async with create_dead_letter_service(_backend(ctx)) as service:
            queues = await service.ensure_infrastructure()
    except AppException as e:
        _fail("Failed to create dead-letter queues", e)

    for queue_name in queues:
        key_value("ensured", queue_name)
    success(f"{len(queues)} dead-letter queue(s) ready")
