"""Typer CLI entrypoint for meetnotes."""
from __future__ import annotations

import asyncio
from typing import Any

import httpx
import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from meetnotes.client.poller import HttpStatusFetcher, StatusPoller
from meetnotes.container import build_container
from meetnotes.core.errors import AppError
from meetnotes.core.logging import get_logger, setup_logging
from meetnotes.core.settings import get_settings
from meetnotes.db.base import Database

app_cli = typer.Typer(help="meetnotes command line interface")
console = Console()
logger = get_logger(__name__)


@app_cli.callback()
def main(log_level: str = typer.Option("INFO", help="Root log level")) -> None:
    setup_logging(log_level)


@app_cli.command("health")
def health() -> None:
    """Show basic health / config info."""
    settings = get_settings()
    table = Table(title="meetnotes Health")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("environment", settings.environment)
    table.add_row("debug", str(settings.debug))
    table.add_row("api_prefix", settings.api_prefix)
    table.add_row("database_url", settings.database_url)
    table.add_row("task_backend", settings.task_backend)
    table.add_row("openai_configured", str(bool(settings.openai_api_key)))
    console.print(table)


@app_cli.command("init-db")
def init_db(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables first"),
) -> None:
    """Create the database tables."""

    async def _run() -> None:
        settings = get_settings()
        logger.info(f"Initializing database at {settings.database_url} (drop={drop})")
        database = Database.from_settings(settings)
        try:
            await database.init_models(drop=drop)
        finally:
            await database.dispose()

    asyncio.run(_run())
    console.print("[bold green]Database initialized[/bold green]")


@app_cli.command("run-server")
def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = True) -> None:  # pragma: no cover
    """Run the FastAPI development server."""
    uvicorn.run("meetnotes.main:app", host=host, port=port, reload=reload)


@app_cli.command("process")
def process(meeting_id: str) -> None:  # pragma: no cover - IO heavy
    """Process a meeting synchronously in this process."""

    async def _run() -> dict[str, Any]:
        container = build_container()
        try:
            await container.database.init_models()
            outcome = await container.processor.process(meeting_id)
            return outcome.to_dict()
        finally:
            await container.aclose()

    try:
        result = asyncio.run(_run())
    except AppError as e:
        console.print(f"[bold red]{e.code}:[/bold red] {e.message}")
        raise typer.Exit(code=1) from e

    table = Table(title=f"Meeting {meeting_id}")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in result.items():
        table.add_row(key, str(value))
    console.print(table)


@app_cli.command("watch")
def watch(
    meeting_id: str,
    user_id: str = typer.Option(..., "--user", "-u", help="Owner of the meeting"),
    base_url: str = typer.Option("http://localhost:8000", help="Server base URL"),
) -> None:  # pragma: no cover - network
    """Poll a running server until the meeting is completed or failed."""
    settings = get_settings()

    def _show(payload: dict[str, Any]) -> None:
        console.print(f"[cyan]{meeting_id}[/cyan] status: [bold]{payload.get('status')}[/bold]")

    async def _run() -> dict[str, Any]:
        async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
            fetcher = HttpStatusFetcher(client, meeting_id, user_id, api_prefix=settings.api_prefix)
            return await StatusPoller(fetcher, on_update=_show).run()

    final = asyncio.run(_run())
    if final.get("status") == "completed":
        console.print("[bold green]Processing complete![/bold green]")
    else:
        console.print(f"[bold red]Processing failed[/bold red] {final.get('error_message') or ''}")
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app_cli()
