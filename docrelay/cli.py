"""CLI entry point for docrelay."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from docrelay.config import DocRelayConfig, load_config
from docrelay.config.loader import DEFAULT_CONFIG_TEMPLATE
from docrelay.errors import DocRelayError, ParserError
from docrelay.pipeline import ConversionOutcome, DocumentPipeline

app = typer.Typer(
    name="docrelay",
    help="Convert documents to markdown and move their images to permanent storage.",
)

config_app = typer.Typer(help="Manage docrelay configuration.")
app.add_typer(config_app, name="config")

# Global state
_config: DocRelayConfig | None = None

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class JsonFormatter(logging.Formatter):
    """One compact JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        event = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            event["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(event, separators=(",", ":"), ensure_ascii=False)


def _configure_logging(level: str, fmt: str) -> None:
    """Install a single docrelay handler on the root logger (stderr)."""
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_docrelay", False)]:
        root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
    handler._docrelay = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(_LOG_LEVELS.get(level, logging.INFO))


def _get_config() -> DocRelayConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to docrelay.yaml")
    ] = None,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log at debug level")
    ] = False,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    _configure_logging("debug" if verbose else _config.log_level, _config.log_format)


def _display_outcome(outcome: ConversionOutcome) -> None:
    rprint(
        Panel(
            f"[dim]File:[/dim]     {outcome.file_name}\n"
            f"[dim]Parser:[/dim]   {outcome.parser} (job {outcome.job_id})\n"
            f"[dim]Storage:[/dim]  {outcome.storage} -> {outcome.namespace}/{outcome.scope}\n"
            f"[dim]Images:[/dim]   {outcome.image_count}\n"
            f"[dim]Time:[/dim]     {outcome.processing_time_ms} ms",
            title="Conversion Result",
            border_style="green",
        )
    )
    if outcome.images:
        table = Table(title="Relocated Images")
        table.add_column("#", justify="right")
        table.add_column("Original", style="yellow")
        table.add_column("Permanent URL", style="cyan")
        for img in outcome.images:
            table.add_row(str(img.index), img.target, img.url)
        rprint(table)


def _describe_error(e: DocRelayError) -> str:
    if isinstance(e, ParserError) and e.retryable:
        return f"{escape(str(e))} [dim](transient, safe to retry)[/dim]"
    return escape(str(e))


async def _convert(
    cfg: DocRelayConfig,
    source: bytes,
    file_name: str,
    **options: str | None,
) -> ConversionOutcome:
    async with DocumentPipeline(cfg) as pipeline:
        return await pipeline.convert(source, file_name, **options)


async def _purge(cfg: DocRelayConfig, namespace: str, scope: str, storage: str | None) -> int:
    async with DocumentPipeline(cfg) as pipeline:
        return await pipeline.purge(namespace, scope, storage=storage)


@app.command()
def convert(
    file: str = typer.Argument(..., help="Path to the PDF/Word document to convert"),
    parser: str | None = typer.Option(None, "--parser", "-p", help="Parsing backend (aliyun, mineru)"),
    storage: str | None = typer.Option(None, "--storage", "-s", help="Image store (bucket, github)"),
    namespace: str | None = typer.Option(None, "--namespace", help="Storage namespace (knowledge base id)"),
    scope: str | None = typer.Option(None, "--scope", help="Storage scope; derived from the file name if omitted"),
    output: str | None = typer.Option(None, "--output", "-o", help="Write markdown to file"),
) -> None:
    """Convert a document to markdown with its images relocated."""
    cfg = _get_config()
    path = Path(file)
    if not path.is_file():
        rprint(f"[red]Error:[/red] File not found: {file}")
        raise typer.Exit(1)

    rprint(f"[bold]Converting[/bold] {path.name} (parser: {parser or cfg.parser.provider})...")
    try:
        outcome = asyncio.run(
            _convert(
                cfg,
                path.read_bytes(),
                path.name,
                parser=parser,
                storage=storage,
                namespace=namespace,
                scope=scope,
            )
        )
    except DocRelayError as e:
        rprint(f"[red]Error:[/red] {_describe_error(e)}")
        raise typer.Exit(1)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)

    if output:
        Path(output).write_text(outcome.markdown, encoding="utf-8")
        rprint(f"[green]Written to[/green] {output}")
    else:
        typer.echo(outcome.markdown)

    _display_outcome(outcome)


@app.command()
def purge(
    namespace: str = typer.Argument(..., help="Storage namespace"),
    scope: str = typer.Argument(..., help="Storage scope to delete"),
    storage: str | None = typer.Option(None, "--storage", "-s", help="Image store (bucket, github)"),
) -> None:
    """Delete every stored image under NAMESPACE/SCOPE (best effort)."""
    cfg = _get_config()
    try:
        deleted = asyncio.run(_purge(cfg, namespace, scope, storage))
    except ValueError as e:
        rprint(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    rprint(f"[green]Deleted[/green] {deleted} object(s) under {namespace}/{scope}")


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default docrelay.yaml in current directory."""
    target = Path("docrelay.yaml")
    if target.exists() and not force:
        rprint("[yellow]docrelay.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")
