"""leadnotify CLI - serve the API, run the worker, inspect and requeue events."""

from __future__ import annotations

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Optional, get_args

import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import settings
from .logging_config import configure_logging
from .schemas.notification import NotificationPayload, NotificationSource
from .services import queue_svc
from .services.event_svc import EventEmitter
from .services.notification_svc import NotificationService
from .worker import NotificationWorker, WorkerConfig

app = typer.Typer(
    name="leadnotify",
    help="Lead notification dispatch service",
    no_args_is_help=True,
)
console = Console()

Source = Enum("Source", {value: value for value in get_args(NotificationSource)}, type=str)


def _output_result(result: dict[str, Any]) -> None:
    console.print_json(json.dumps(result, default=str))


@asynccontextmanager
async def _session_factory():
    """A short-lived engine for one command, disposed on exit."""
    engine = create_async_engine(settings.database_url, echo=settings.echo_sql)
    try:
        if "sqlite" in settings.database_url:
            from .models import Base
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


def _build_notifier() -> NotificationService:
    return NotificationService.from_settings(settings)


def _build_worker(session_factory: async_sessionmaker[AsyncSession]) -> NotificationWorker:
    config = WorkerConfig.from_settings(settings)
    emitter = EventEmitter(session_factory, default_max_retries=config.max_retries)
    return NotificationWorker(session_factory, _build_notifier(), emitter, config)


@app.command("serve")
def serve(
    port: int = typer.Option(4000, "--port", "-p", help="Port to run on"),
    host: str = typer.Option("127.0.0.1", "--host", help="Host to bind to"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Launch the lead capture API (the worker runs in-process)."""
    console.print(f"[bold cyan]Starting lead notification API at http://{host}:{port}[/bold cyan]")
    uvicorn.run("leadnotify.app:app", host=host, port=port, reload=reload)


@app.command("worker")
def run_worker():
    """Run the notification worker as a standalone process."""
    configure_logging()
    config = WorkerConfig.from_settings(settings)

    async def _run() -> None:
        async with _session_factory() as session_factory:
            worker = _build_worker(session_factory)
            worker.start()
            try:
                await asyncio.Event().wait()
            finally:
                await worker.stop()

    console.print(
        f"[bold cyan]Notification worker polling every "
        f"{config.poll_interval_seconds}s[/bold cyan]"
    )
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker stopped[/yellow]")


@app.command("process-batch")
def process_batch(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Process one batch of due events and exit (for cron triggers)."""
    configure_logging()

    async def _run():
        async with _session_factory() as session_factory:
            return await _build_worker(session_factory).process_batch()

    result = asyncio.run(_run())
    if json_output:
        _output_result(result.to_dict())
        return
    console.print(
        f"[green]{result.processed} processed[/green], "
        f"[red]{result.failed} failed[/red], "
        f"[dim]{result.skipped} skipped[/dim]"
    )


@app.command("dead-letters")
def dead_letters(
    limit: int = typer.Option(50, "--limit", "-l", help="Max events to list"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List events that exhausted their retries."""

    async def _run():
        async with _session_factory() as session_factory:
            async with session_factory() as db:
                return await queue_svc.list_events(db, state="dead", limit=limit)

    events = asyncio.run(_run())
    if json_output:
        _output_result(
            {
                "events": [
                    {
                        "id": e.id,
                        "event_type": e.event_type,
                        "conversation_id": e.conversation_id,
                        "retry_count": e.retry_count,
                        "last_error": e.last_error,
                        "created_at": e.created_at,
                    }
                    for e in events
                ]
            }
        )
        return

    if not events:
        console.print("[green]No dead-lettered events[/green]")
        return

    table = Table(title=f"Dead-lettered events ({len(events)})")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Conversation")
    table.add_column("Retries", justify="right")
    table.add_column("Last error", style="red")
    for e in events:
        table.add_row(
            str(e.id),
            e.event_type,
            str(e.conversation_id),
            f"{e.retry_count}/{e.max_retries}",
            (e.last_error or "")[:80],
        )
    console.print(table)


@app.command("requeue")
def requeue(event_id: str = typer.Argument(..., help="Event ID to requeue")):
    """Reset a dead-lettered event so the worker picks it up again."""
    try:
        parsed = uuid.UUID(event_id)
    except ValueError:
        console.print(f"[red]Error: invalid event id {event_id!r}[/red]")
        raise typer.Exit(1)

    async def _run():
        async with _session_factory() as session_factory:
            async with session_factory() as db:
                return await queue_svc.requeue_event(db, parsed)

    try:
        event = asyncio.run(_run())
    except queue_svc.EventNotRequeueable as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)

    if event is None:
        console.print(f"[red]Event {event_id} not found[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Requeued {event.event_type} event {event.id}[/green]")


@app.command("test-notify")
def test_notify(
    name: str = typer.Option("Test Lead", "--name", "-n", help="Customer name"),
    source: Source = typer.Option(Source("system"), "--source", "-s", help="Notification source"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Free-text body"),
):
    """Send a test notification through every configured channel."""
    configure_logging()
    service = _build_notifier()
    configured = service.configured_channels()
    console.print(
        Panel(
            f"[bold]Configured channels:[/bold] {', '.join(configured) or 'none'}",
            expand=False,
        )
    )

    payload = NotificationPayload(
        customer_name=name,
        customer_phone="+971500000000",
        customer_email="test@example.com",
        lead_score=85,
        source=source.value,
        message=message or "Test notification from the leadnotify CLI.",
    )
    result = asyncio.run(service.send_notification(payload))

    for channel, outcome in result.channels.items():
        if outcome.success:
            console.print(f"  [green]{channel}: sent[/green]")
        else:
            console.print(f"  [red]{channel}: {outcome.error}[/red]")
    if not result.success:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
