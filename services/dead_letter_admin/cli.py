"""Typer-based admin CLI for quarantined relay messages.

    python -m services.dead_letter_admin.cli list --group notification-service
    python -m services.dead_letter_admin.cli show <envelope-id> --group notification-service
    python -m services.dead_letter_admin.cli replay <envelope-id> --group notification-service
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import typer
from school_service_libs.dead_letter import DeadLetterRouter, RedisDeadLetterStore
from school_service_libs.error_handling import RelayError
from school_service_libs.kafka_client import KafkaBus
from school_service_libs.logging_utils import configure_service_logging
from school_service_libs.redis_client import RedisClient

from services.dead_letter_admin.config import AdminSettings

app = typer.Typer(help="Inspect and replay dead-lettered events")


@asynccontextmanager
async def open_router(
    settings: AdminSettings, with_publisher: bool
) -> AsyncIterator[DeadLetterRouter]:
    """Connect to the dead-letter store, and to Kafka when records will be replayed."""
    async with RedisClient(
        client_id=f"{settings.SERVICE_NAME}-redis", redis_url=settings.REDIS_URL
    ) as redis_client:
        store = RedisDeadLetterStore(redis_client, key_prefix=settings.DEAD_LETTER_KEY_PREFIX)
        if not with_publisher:
            yield DeadLetterRouter(store, service_name=settings.SERVICE_NAME)
            return
        async with KafkaBus(
            client_id=f"{settings.SERVICE_NAME}-producer",
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            publish_timeout_seconds=settings.KAFKA_PUBLISH_TIMEOUT_SECONDS,
        ) as bus:
            yield DeadLetterRouter(store, bus, service_name=settings.SERVICE_NAME)


def _settings() -> AdminSettings:
    settings = AdminSettings()
    configure_service_logging(settings.SERVICE_NAME, log_level="WARNING")
    return settings


@app.command("list")
def list_records(
    group: str = typer.Option(
        ..., "--group", "-g", help="Consumer group that quarantined the records"
    ),
    limit: int = typer.Option(100, min=1, help="Maximum number of records to print"),
) -> None:
    """Print quarantined records, oldest first."""

    async def run() -> None:
        async with open_router(_settings(), with_publisher=False) as router:
            records = await router.store.list_records(group, limit)

        if not records:
            typer.echo(f"No dead-letter records for group '{group}'.")
            return
        for record in records:
            kind = "poison" if record.is_poison else "exhausted"
            typer.echo(
                f"{record.envelope_id}  {kind:<9}  {record.original_channel}  "
                f"{record.event_type or '-'}  attempts={record.attempt_count}  "
                f"{record.failure_reason}"
            )

    asyncio.run(run())


@app.command("show")
def show_record(
    envelope_id: str = typer.Argument(..., help="Envelope id of the record"),
    group: str = typer.Option(
        ..., "--group", "-g", help="Consumer group that quarantined the record"
    ),
) -> None:
    """Print one record as JSON."""

    async def run() -> None:
        async with open_router(_settings(), with_publisher=False) as router:
            record = await router.store.get(group, envelope_id)

        if record is None:
            typer.secho(
                f"No dead-letter record '{envelope_id}' for group '{group}'",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        typer.echo(json.dumps(json.loads(record.to_json()), indent=2, ensure_ascii=False))

    asyncio.run(run())


@app.command("replay")
def replay_record(
    envelope_id: str = typer.Argument(..., help="Envelope id of the record"),
    group: str = typer.Option(
        ..., "--group", "-g", help="Consumer group that quarantined the record"
    ),
) -> None:
    """Republish a quarantined envelope to its original channel and drop the record."""

    async def run() -> None:
        async with open_router(_settings(), with_publisher=True) as router:
            try:
                outcome = await router.replay(envelope_id, group)
            except RelayError as e:
                typer.secho(f"Replay failed: {e}", fg=typer.colors.RED, err=True)
                raise typer.Exit(code=1) from e

        typer.secho(
            f"Replayed {envelope_id} (partition={outcome.partition}, offset={outcome.offset})",
            fg=typer.colors.GREEN,
        )

    asyncio.run(run())


if __name__ == "__main__":
    app()
