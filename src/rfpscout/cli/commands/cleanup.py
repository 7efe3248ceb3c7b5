"""
Retention cleanup over stored verdicts.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from rfpscout.cli.context import FATAL_ERRORS, CONFIG_OPTION_HELP, console, fail, load_config
from rfpscout.core.analysis.verdict import FitBands
from rfpscout.core.normalize.parsing import utcnow
from rfpscout.core.orchestrator.runner import build_transport, new_run_id
from rfpscout.core.retention import (
    CleanupEngine,
    CleanupOptions,
    validate_cleanup_options,
    verdicts_by_listing,
    write_cleanup_report,
)
from rfpscout.persistence.repo import VerdictRepository
from rfpscout.persistence.store import open_durable_store


def cleanup(
    days: int = typer.Option(
        30,
        "--days",
        "-d",
        min=0,
        help="Only listings analyzed at least this many days ago",
    ),
    threshold: Optional[int] = typer.Option(
        None,
        "--threshold",
        "-t",
        help="Clean listings scoring below this (overrides band flags)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show what would be removed without deleting anything",
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
) -> None:
    """Apply the retention policy to stored fit verdicts.

    Examples:
        rfpscout cleanup --dry-run
        rfpscout cleanup --days 14 --threshold 40
    """
    app_config = load_config(config)
    bands = FitBands.from_config(app_config.bands)
    options = CleanupOptions.from_config(app_config.retention, dry_run=dry_run, custom_score_threshold=threshold)

    warnings = validate_cleanup_options(options, bands)
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    cutoff = utcnow() - timedelta(days=days)
    local_path = app_config.database.sqlite_path or app_config.data_dir / app_config.store.filename

    try:
        with open_durable_store(
            build_transport(app_config),
            local_path,
            holder_id=new_run_id("cleanup"),
            ttl_minutes=app_config.store.lock_ttl_minutes,
            upload=False,
        ) as db:
            with db.session() as session:
                verdicts = VerdictRepository(session).analyzed_before(cutoff, app_config.analysis.analysis_type)

            # Artifacts are removed while the store lock is held.
            selected = verdicts_by_listing(verdicts)
            outcome = CleanupEngine(app_config.artifacts_dir, bands).cleanup(selected, options)
            report = write_cleanup_report(outcome, app_config.reports_dir, warnings=warnings)
    except FATAL_ERRORS as e:
        fail(str(e))

    table = Table(title="Cleanup Dry Run" if dry_run else "Cleanup")
    table.add_column("Listing", style="cyan", overflow="fold")
    table.add_column("Score", justify="right")
    table.add_column("Rating")
    table.add_column("Files" if not dry_run else "Would remove", justify="right")
    for listing_id in outcome.cleaned:
        verdict = selected[listing_id]
        table.add_row(
            listing_id,
            str(verdict.score),
            verdict.rating.value,
            str(len(outcome.removed_files.get(listing_id, []))),
        )

    console.print()
    if outcome.cleaned:
        console.print(table)
    console.print(
        f"Processed {outcome.total} listing(s) analyzed before {cutoff:%Y-%m-%d}: "
        f"[green]{len(outcome.cleaned)} {'to clean' if dry_run else 'cleaned'}[/green], "
        f"{len(outcome.preserved)} preserved, "
        f"[red]{len(outcome.errors)} error(s)[/red]"
    )
    for error in outcome.errors:
        console.print(f"[yellow]  - {error}[/yellow]")
    console.print(f"[dim]Report: {report}[/dim]")
