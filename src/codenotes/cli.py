"""Command line interface for CodeNotes."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from codenotes.anchors.engine import AnchorEngine
from codenotes.anchors.store import AnchorFileError
from codenotes.config import AppConfig
from codenotes.models import LineRange
from codenotes.vcs.git import VCSError


console = Console()
app = typer.Typer(help="CodeNotes - line annotations that follow your code")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_engine(context: int, store_dir: Optional[Path], timeout: float) -> AnchorEngine:
    defaults = AppConfig()
    config = AppConfig(
        context_before=context,
        context_after=context,
        store_dir=store_dir if store_dir is not None else defaults.store_dir,
        vcs_timeout=timeout,
    )
    return AnchorEngine(config)


def _require_file(path: Path) -> Path:
    if not path.is_file():
        raise typer.BadParameter(f"File not found: {path}")
    return path


@app.command()
def serve(
    tcp: bool = typer.Option(False, "--tcp", help="Listen on TCP instead of stdio"),
    host: str = typer.Option("127.0.0.1", help="Host interface for --tcp"),
    port: int = typer.Option(2087, help="Port for --tcp"),
    context: int = typer.Option(AppConfig().context_before, help="Context lines around a selection"),
    store_dir: Path = typer.Option(None, "--store-dir", help="Anchor directory inside repositories"),
    timeout: float = typer.Option(AppConfig().vcs_timeout, help="Git query timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", "--debug", help="Verbose logging"),
) -> None:
    """Start the language server."""
    from codenotes.lsp.server import build_server

    _setup_logging(verbose)
    server = build_server(_build_engine(context, store_dir, timeout))
    logging.getLogger(__name__).info("Start LSP server...")
    if tcp:
        server.start_tcp(host, port)
    else:
        server.start_io()


@app.command()
def add(
    path: Path = typer.Argument(..., help="Source file to annotate", resolve_path=True),
    start: int = typer.Argument(..., min=0, help="First annotated line (0-based)"),
    end: int = typer.Argument(..., min=0, help="Last annotated line (0-based)"),
    message: str = typer.Argument(..., help="Annotation text"),
    context: int = typer.Option(AppConfig().context_before, help="Context lines around a selection"),
    store_dir: Path = typer.Option(None, "--store-dir", help="Anchor directory inside repositories"),
    timeout: float = typer.Option(AppConfig().vcs_timeout, help="Git query timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Attach an annotation to a range of lines."""
    _setup_logging(verbose)
    _require_file(path)
    try:
        selection = LineRange(start, end)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    engine = _build_engine(context, store_dir, timeout)
    try:
        anchor = engine.create_anchor(path, selection, message)
    except (ValueError, OSError, VCSError) as exc:
        console.print(f"[red]Unable to add annotation:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"Added annotation [bold]{anchor.id}[/bold] to {path}")


@app.command("list")
def list_anchors(
    path: Path = typer.Argument(..., help="Source file", resolve_path=True),
    show_all: bool = typer.Option(False, "--all", help="Include stale and hidden annotations"),
    rev: Optional[str] = typer.Option(None, "--rev", help="Show annotations as of a git revision"),
    store_dir: Path = typer.Option(None, "--store-dir", help="Anchor directory inside repositories"),
    timeout: float = typer.Option(AppConfig().vcs_timeout, help="Git query timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Show annotations at their current position."""
    _setup_logging(verbose)
    _require_file(path)
    engine = _build_engine(AppConfig().context_before, store_dir, timeout)
    try:
        if rev is not None:
            results = engine.recover_at_revision(path, rev)
        elif show_all:
            results = engine.recover(path)
        else:
            results = engine.recover_visible(path)
    except (ValueError, OSError, VCSError) as exc:
        console.print(f"[red]Unable to read annotations:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if not results:
        console.print("[yellow]No annotations found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Id")
    table.add_column("Lines")
    table.add_column("Status")
    table.add_column("Message")

    for item in results:
        if item.range is None:
            lines, status = "-", "stale"
        else:
            lines, status = f"{item.range.start}-{item.range.end}", "active"
        table.add_row(item.anchor.id, lines, status, item.anchor.message.replace("\n", " ")[:180])

    console.print(table)


@app.command()
def remove(
    path: Path = typer.Argument(..., help="Source file", resolve_path=True),
    anchor_id: str = typer.Argument(..., help="Annotation id, as shown by 'list'"),
    store_dir: Path = typer.Option(None, "--store-dir", help="Anchor directory inside repositories"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Delete one annotation."""
    _setup_logging(verbose)
    engine = _build_engine(AppConfig().context_before, store_dir, AppConfig().vcs_timeout)
    try:
        removed = engine.remove_anchor(path, anchor_id)
    except (AnchorFileError, OSError, VCSError) as exc:
        console.print(f"[red]Unable to remove annotation:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if not removed:
        console.print(f"[yellow]No annotation {anchor_id} on {path}.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"Removed annotation {anchor_id}.")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
    store_dir: Path = typer.Option(None, "--store-dir", help="Anchor directory inside repositories"),
) -> None:
    """Start the HTTP interface."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - defensive
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from codenotes.web.app import create_app

    engine = _build_engine(AppConfig().context_before, store_dir, AppConfig().vcs_timeout)
    console.print(f"Starting web interface on http://{host}:{port}")
    uvicorn.run(
        create_app(engine),
        host=host,
        port=port,
        reload=False,
        log_level="info",
    )
