"""
RFPScout CLI - Main entry point.

Discovers RFPs from a syndication feed, scores their fit, and keeps a
durable record of listings, verdicts and runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.panel import Panel
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from rfpscout import __app_name__, __version__
from rfpscout.cli.context import FATAL_ERRORS, CONFIG_OPTION_HELP, console, err_console, fail, load_config
from rfpscout.core.config import DEFAULT_CONFIG_PATH, AppConfig, write_default_config
from rfpscout.core.orchestrator.runner import build_transport
from rfpscout.persistence.db import Database
from rfpscout.persistence.ledger import RunLedger
from rfpscout.persistence.repo import VerdictRepository

# Load environment variables from .env (if present)
load_dotenv()

install_rich_traceback(show_locals=False, width=120)

app = typer.Typer(
    name=__app_name__,
    help="RFP discovery, fit scoring and retention",
    rich_markup_mode="rich",
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]{__app_name__}[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """RFPScout - RFP discovery and fit scoring."""
    pass


# =============================================================================
# Register command modules
# =============================================================================

from .commands import cleanup, pipeline  # noqa: E402

app.command("run")(pipeline.run_pipeline)
app.command("scrape")(pipeline.scrape)
app.command("cleanup")(cleanup.cleanup)


# =============================================================================
# Init Command
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration",
    ),
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Initialize directories, configuration and the local store."""
    written = write_default_config(config, force=force)
    app_config = load_config(config)

    db = Database.for_path(app_config.database.sqlite_path or app_config.data_dir / app_config.store.filename)
    db_path = db.path
    db.dispose()

    console.print()
    console.print(Panel.fit(
        "[bold green]OK - RFPScout initialized[/bold green]\n\n"
        f"  - [cyan]{config}[/cyan] - {'created' if written else 'kept existing'}\n"
        f"  - [cyan]{db_path}[/cyan] - local store\n"
        f"  - [cyan]{app_config.artifacts_dir}[/cyan] - listing artifacts\n"
        f"  - [cyan]{app_config.reports_dir}[/cyan] - cleanup reports\n\n"
        "Next steps:\n"
        "  1. Review keywords and bands in the config\n"
        "  2. Run the pipeline: [yellow]rfpscout run[/yellow]",
        title="[bold]Initialization Complete[/bold]",
        border_style="green",
    ))


# =============================================================================
# Status Command
# =============================================================================


def _snapshot_path(app_config: AppConfig) -> Path | None:
    """Read-only copy of the durable store for reporting (no lock taken)."""
    transport = build_transport(app_config)
    if transport.name == "none":
        local = app_config.database.sqlite_path or app_config.data_dir / app_config.store.filename
        return local if local.exists() else None
    return transport.download(app_config.working_dir / "status-snapshot.db")


@app.command()
def status(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    limit: int = typer.Option(5, "--limit", "-n", help="Recent runs to show"),
) -> None:
    """Show store contents, rating counts and recent runs."""
    app_config = load_config(config)

    try:
        path = _snapshot_path(app_config)
    except FATAL_ERRORS as e:
        fail(str(e))

    if path is None:
        err_console.print("[red]No store found. Run:[/red] rfpscout init")
        raise typer.Exit(1)

    db = Database.for_path(path)
    try:
        counts = db.counts()
        with db.session() as session:
            ratings = VerdictRepository(session).count_by_rating()
        runs = RunLedger(db).recent(limit)
        last_run = RunLedger(db).last_run_timestamp()
    finally:
        db.dispose()

    console.print()
    console.print(f"[bold]RFPScout Status[/bold] [dim]({path}, {path.stat().st_size:,} bytes)[/dim]")
    console.print()

    store_table = Table(title="Store", show_header=True, header_style="bold magenta")
    store_table.add_column("Table", style="cyan")
    store_table.add_column("Rows", justify="right")
    for name, count in counts.items():
        store_table.add_row(name, str(count))
    console.print(store_table)

    if ratings:
        rating_table = Table(title="Fit Ratings", show_header=True, header_style="bold magenta")
        rating_table.add_column("Rating", style="cyan")
        rating_table.add_column("Count", justify="right")
        for rating in ("excellent", "good", "poor", "rejected"):
            if rating in ratings:
                rating_table.add_row(rating, str(ratings[rating]))
        console.print(rating_table)

    if runs:
        run_table = Table(title="Recent Runs", show_header=True, header_style="bold magenta")
        run_table.add_column("Run", style="cyan")
        run_table.add_column("Kind")
        run_table.add_column("Status", justify="center")
        run_table.add_column("Started", justify="right")
        run_table.add_column("Found", justify="right")
        run_table.add_column("Analyzed", justify="right")
        run_table.add_column("High", justify="right")
        for record in runs:
            style = "green" if record.status == "COMPLETED" else "red"
            run_table.add_row(
                record.run_uid,
                record.kind,
                f"[{style}]{record.status}[/{style}]",
                record.started_at.strftime("%Y-%m-%d %H:%M"),
                str(record.items_found),
                str(record.items_analyzed),
                str(record.high_score_count),
            )
        console.print(run_table)
    else:
        console.print("[dim]No runs recorded yet.[/dim]")

    console.print(f"Next lower bound: {last_run.isoformat() if last_run else '[dim]default lookback[/dim]'}")


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
