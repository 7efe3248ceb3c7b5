"""
Pipeline commands: full runs and listing-only scrapes.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from rfpscout.cli.context import FATAL_ERRORS, CONFIG_OPTION_HELP, console, fail, load_config, parse_since
from rfpscout.core.orchestrator.runner import MODE_RUN, MODE_SCRAPE, RunStats, build_runner


def _execute(mode: str, since: Optional[str], config_path: Optional[Path], verbose: bool, dry_run_cleanup: bool = False) -> RunStats:
    since_dt = parse_since(since)
    config = load_config(config_path, verbose)

    try:
        runner = build_runner(config)
        return asyncio.run(runner.run(since=since_dt, mode=mode, dry_run_cleanup=dry_run_cleanup))
    except FATAL_ERRORS as e:
        fail(str(e), getattr(e, "details", None))


def _show_summary(stats: RunStats) -> None:
    table = Table(title=f"{stats.mode.title()} Summary ({stats.run_id})")
    table.add_column("Stage", style="cyan")
    table.add_column("Count", justify="right")

    table.add_row("Found", str(stats.items_found))
    table.add_row("Promising", str(stats.items_promising))
    table.add_row("Fetched", str(stats.items_fetched))
    if stats.mode == MODE_RUN:
        table.add_row("Analyzed", str(stats.items_analyzed))
        table.add_row("High fit", f"[green]{stats.high_score_count}[/green]")
    table.add_row("Merged", str(stats.merged_count))
    if stats.mode == MODE_RUN:
        table.add_row("Cleaned", str(stats.cleaned_count))
    table.add_row("Errors", f"[red]{len(stats.errors)}[/red]" if stats.errors else "0")

    console.print()
    console.print(table)

    if stats.lower_bound:
        console.print(f"[dim]Lower bound: {stats.lower_bound.isoformat()}[/dim]")
    if stats.duration_seconds is not None:
        console.print(f"[dim]Duration: {stats.duration_seconds:.1f}s[/dim]")
    if stats.cleanup_report:
        console.print(f"[dim]Cleanup report: {stats.cleanup_report}[/dim]")

    for error in stats.errors[:10]:
        console.print(f"[yellow]  - {error}[/yellow]")
    if len(stats.errors) > 10:
        console.print(f"[dim]  ... and {len(stats.errors) - 10} more[/dim]")


def run_pipeline(
    since: Optional[str] = typer.Option(
        None,
        "--since",
        "-s",
        help="Only consider items published at or after this date",
    ),
    dry_run_cleanup: bool = typer.Option(
        False,
        "--dry-run-cleanup",
        help="Plan artifact cleanup without deleting anything",
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
) -> None:
    """Run the full pipeline: ingest, filter, fetch, analyze, merge, clean up.

    Examples:
        rfpscout run
        rfpscout run --since 2024-01-03 --dry-run-cleanup
    """
    stats = _execute(MODE_RUN, since, config, verbose, dry_run_cleanup=dry_run_cleanup)
    _show_summary(stats)


def scrape(
    since: Optional[str] = typer.Option(
        None,
        "--since",
        "-s",
        help="Only consider items published at or after this date",
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging"),
) -> None:
    """Ingest, filter, fetch and merge listings without analysis or cleanup.

    Scrape runs are recorded but do not move the lower bound of full runs.
    """
    stats = _execute(MODE_SCRAPE, since, config, verbose)
    _show_summary(stats)
