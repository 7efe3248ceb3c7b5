"""
Retention policy: remove bulk artifacts of low-fit listings.

Only files under ``<artifacts_dir>/<listing dir>/`` are touched. Stored
listings and verdicts are never deleted. Dry-run walks the same decisions
and directory checks, recording what would be removed.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from rfpscout.core.analysis.verdict import FitBands, FitRating, FitVerdict
from rfpscout.core.normalize.canonical import safe_listing_dirname

if TYPE_CHECKING:
    from rfpscout.core.config.models import RetentionConfig

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_ARTIFACTS = (
    "fit-report.html",
    "fit-report.md",
    "fit-analysis.json",
    "metadata.json",
)


@dataclass(frozen=True)
class CleanupOptions:
    """Switches for one cleanup pass."""

    dry_run: bool = False
    cleanup_poor_band: bool = True
    cleanup_rejected_band: bool = True
    preserve_audit_artifacts: bool = True
    custom_score_threshold: int | None = None
    audit_artifacts: tuple[str, ...] = DEFAULT_AUDIT_ARTIFACTS

    @classmethod
    def from_config(
        cls,
        config: "RetentionConfig",
        *,
        dry_run: bool = False,
        custom_score_threshold: int | None = None,
    ) -> "CleanupOptions":
        threshold = custom_score_threshold
        if threshold is None:
            threshold = config.custom_score_threshold
        return cls(
            dry_run=dry_run,
            cleanup_poor_band=config.cleanup_poor_band,
            cleanup_rejected_band=config.cleanup_rejected_band,
            preserve_audit_artifacts=config.preserve_audit_artifacts,
            custom_score_threshold=threshold,
            audit_artifacts=tuple(config.audit_artifacts),
        )

    def is_audit_artifact(self, filename: str) -> bool:
        return any(fnmatch.fnmatch(filename, pattern) for pattern in self.audit_artifacts)


@dataclass
class CleanupOutcome:
    """Result of one cleanup pass."""

    total: int = 0
    cleaned: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    removed_files: dict[str, list[str]] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def cleaned_count(self) -> int:
        return len(self.cleaned)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalProcessed": self.total,
            "cleanedRFPs": list(self.cleaned),
            "preservedRFPs": list(self.preserved),
            "errors": list(self.errors),
            "removedFiles": {k: list(v) for k, v in self.removed_files.items()},
            "dryRun": self.dry_run,
        }


def should_clean(verdict: FitVerdict, options: CleanupOptions, bands: FitBands) -> bool:
    """Decide whether a listing's artifacts should be cleaned.

    A custom score threshold, when set, overrides the band flags entirely.
    Otherwise the band flags apply, and with ``cleanup_poor_band`` any score
    below the poor floor is cleaned regardless of its stated rating.
    """
    if options.custom_score_threshold is not None:
        return verdict.score < options.custom_score_threshold

    if verdict.rating == FitRating.REJECTED and options.cleanup_rejected_band:
        return True
    if verdict.rating == FitRating.POOR and options.cleanup_poor_band:
        return True
    if verdict.score < bands.poor and options.cleanup_poor_band:
        return True
    return False


def validate_cleanup_options(options: CleanupOptions, bands: FitBands | None = None) -> list[str]:
    """Return human-readable warnings about a cleanup configuration."""
    bands = bands or FitBands()
    warnings: list[str] = []
    threshold = options.custom_score_threshold

    if threshold is None and not options.cleanup_poor_band and not options.cleanup_rejected_band:
        warnings.append("No cleanup enabled: both band flags are off and no score threshold is set")
    if threshold is not None and not 0 <= threshold <= 100:
        warnings.append(f"Custom score threshold {threshold} is outside 0..100")
    elif threshold is not None and threshold > bands.good:
        warnings.append(
            f"Custom score threshold {threshold} is above the good floor ({bands.good}); "
            "good-fit listings will be cleaned"
        )
    if not options.preserve_audit_artifacts:
        warnings.append("Audit artifacts are not preserved; cleaned listings lose their reports")
    return warnings


class CleanupEngine:
    """Applies a retention policy to per-listing artifact directories."""

    def __init__(self, artifacts_dir: Path | str, bands: FitBands | None = None) -> None:
        self.artifacts_dir = Path(artifacts_dir)
        self.bands = bands or FitBands()

    def dir_for(self, listing_id: str) -> Path:
        return self.artifacts_dir / safe_listing_dirname(listing_id)

    def cleanup(self, verdicts: Mapping[str, FitVerdict], options: CleanupOptions) -> CleanupOutcome:
        """Clean artifacts of every listing the policy selects.

        Args:
            verdicts: Current verdict per listing id
            options: Policy switches

        Returns:
            CleanupOutcome; per-listing problems are collected in ``errors``
        """
        outcome = CleanupOutcome(total=len(verdicts), dry_run=options.dry_run)
        verb = "Would clean" if options.dry_run else "Cleaned"

        for listing_id, verdict in verdicts.items():
            if not should_clean(verdict, options, self.bands):
                outcome.preserved.append(listing_id)
                continue

            directory = self.dir_for(listing_id)
            if not directory.is_dir():
                outcome.errors.append(f"{listing_id}: artifact directory not found ({directory})")
                continue

            removed, errors = self._clean_directory(directory, options)
            outcome.errors.extend(f"{listing_id}: {e}" for e in errors)
            outcome.removed_files[listing_id] = removed
            outcome.cleaned.append(listing_id)
            logger.info(
                f"{verb} {listing_id} (score {verdict.score}, {verdict.rating.value}): {len(removed)} file(s)",
                extra={"listing_id": listing_id, "stage": "cleanup"},
            )

        logger.info(
            f"Cleanup {'dry run ' if options.dry_run else ''}complete: "
            f"{len(outcome.cleaned)} cleaned, {len(outcome.preserved)} preserved, {len(outcome.errors)} error(s)"
        )
        return outcome

    def _clean_directory(self, directory: Path, options: CleanupOptions) -> tuple[list[str], list[str]]:
        removed: list[str] = []
        errors: list[str] = []
        remaining = 0

        for path in sorted(directory.iterdir()):
            if not path.is_file():
                remaining += 1
                continue
            if options.preserve_audit_artifacts and options.is_audit_artifact(path.name):
                remaining += 1
                continue
            if options.dry_run:
                removed.append(path.name)
                continue
            try:
                path.unlink()
                removed.append(path.name)
            except OSError as e:
                remaining += 1
                errors.append(f"could not remove {path.name}: {e}")

        if remaining == 0 and not options.preserve_audit_artifacts and not options.dry_run:
            try:
                directory.rmdir()
            except OSError as e:
                errors.append(f"could not remove directory: {e}")

        return removed, errors


def verdicts_by_listing(verdicts: Sequence[FitVerdict]) -> dict[str, FitVerdict]:
    """Index verdicts by listing id; the latest analysis wins on duplicates."""
    indexed: dict[str, FitVerdict] = {}
    for verdict in verdicts:
        current = indexed.get(verdict.listing_id)
        if current is None or verdict.analyzed_at > current.analyzed_at:
            indexed[verdict.listing_id] = verdict
    return indexed
