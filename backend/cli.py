"""Command-line interface for the Municipal Assistant."""

import asyncio
import json
import sys

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import get_settings
from logging_config import configure_logging

app = typer.Typer(
    name="grad-assistant",
    help="Municipal Assistant - citizen Q&A over official documents",
    add_completion=False,
)
console = Console()
logger = structlog.get_logger(__name__)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    settings = get_settings()
    configure_logging("DEBUG" if verbose else "WARNING", json_output=settings.log_json)


@app.command("init-db")
def init_db_command() -> None:
    """Create all database tables."""
    from database import init_db

    init_db()
    console.print(f"[green]Database ready:[/green] {get_settings().database_url}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8100, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run("main:app", host=host, port=port, reload=reload)


@app.command()
def ask(
    city: str = typer.Argument(..., help="City slug or code"),
    message: str = typer.Argument(..., help="Question to ask"),
    conversation_id: str = typer.Option(None, "--conversation", "-c", help="Continue a conversation"),
    show_meta: bool = typer.Option(True, "--meta/--no-meta", help="Print the meta frame"),
) -> None:
    """Run one chat turn locally and stream the answer to the terminal."""
    from database import SessionLocal, init_db
    from main import build_orchestrator
    from services.background import BackgroundRunner
    from services.errors import ChatCoreError

    init_db()
    settings = get_settings()

    async def run() -> dict:
        runner = BackgroundRunner()
        orchestrator = build_orchestrator(settings, runner)
        db = SessionLocal()
        try:
            turn = await orchestrator.prepare(db, city, message, conversation_id=conversation_id)
        except ChatCoreError:
            db.close()
            raise

        meta: dict = {}
        async for frame in orchestrator.stream(db, turn):
            meta = _render_frame(frame) or meta
        console.print()
        await runner.drain()
        return meta

    try:
        meta = asyncio.run(run())
    except ChatCoreError as e:
        console.print(f"[red]Error ({e.error_code}):[/red] {e}")
        sys.exit(1)

    if show_meta and meta:
        _display_meta(meta)


def _render_frame(frame: str):
    from services.sse import parse_frames

    for parsed in parse_frames(frame):
        if parsed["comment"]:
            console.print(f"\n[red]{parsed['comment']}[/red]")
        elif parsed["event"] == "meta":
            return json.loads(parsed["data"])
        elif parsed["data"] is not None and parsed["data"] != "[DONE]":
            console.print(parsed["data"], end="", soft_wrap=True, highlight=False)
    return None


def _display_meta(meta: dict) -> None:
    table = Table(title="Turn", show_header=False)
    table.add_column("Field", style="dim")
    table.add_column("Value")
    for key in ("model", "latency_ms", "retrieved_docs_count", "used_fallback", "needs_human"):
        table.add_row(key, str(meta.get(key)))
    console.print(table)

    for doc in meta.get("retrieved_docs_top3") or []:
        console.print(
            Panel.fit(
                f"{doc.get('source') or 'N/A'}\nscore {doc.get('score')}",
                title=doc.get("title") or "Untitled",
                border_style="blue",
            )
        )


if __name__ == "__main__":
    app()
