"""
Pydantic configuration models for RFPScout.

These models provide type-safe configuration with validation for:
- Feed source and relevance keywords
- Pre-filter criteria and weights
- Fit band cut points and retention policy
- Durable store transport, logging and retries
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Enums
# =============================================================================


class ClassifierType(str, Enum):
    """Pre-filter classifier strategies."""

    HEURISTIC = "heuristic"
    EXTERNAL = "external"


class ScoringProvider(str, Enum):
    """Scoring collaborator used by the fit analyzer."""

    RULES = "rules"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class TransportType(str, Enum):
    """Durable store transport kinds."""

    NONE = "none"
    LOCAL_DIR = "local_dir"


# =============================================================================
# Feed Configuration
# =============================================================================


class FeedConfig(BaseModel):
    """Discovery feed settings."""

    url: str = Field(
        default="https://feeds.feedburner.com/WebDesign-RFP",
        description="RSS/Atom feed listing new RFPs",
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Feed request timeout",
    )
    user_agent: str = Field(
        default="RFPScout/0.1",
        description="User-Agent header sent with feed requests",
    )
    max_items: int = Field(
        default=200,
        ge=1,
        description="Upper bound on items taken from one feed pass",
    )
    default_lookback_days: int = Field(
        default=7,
        ge=1,
        description="Lower bound used when no previous run is recorded",
    )


class KeywordConfig(BaseModel):
    """Keyword lists describing the business profile."""

    topical: list[str] = Field(
        default_factory=lambda: [
            "university", "college", "academic", "education",
            "campus", "school", "institute",
        ],
        description="Sector keywords; a match is required for a promising item",
    )
    project_types: list[str] = Field(
        default_factory=lambda: ["redesign", "redevelopment", "migration", "rebuild"],
    )
    technologies_preferred: list[str] = Field(
        default_factory=lambda: ["drupal", "wordpress", "modern campus"],
    )
    technologies_acceptable: list[str] = Field(
        default_factory=lambda: ["joomla", "squarespace", "wix"],
    )
    tech_positive: list[str] = Field(
        default_factory=lambda: ["responsive", "accessibility", "wcag", "ux", "ui"],
    )
    red_flags: list[str] = Field(
        default_factory=lambda: ["maintenance only", "minor updates", "hosting only"],
    )

    @field_validator("*")
    @classmethod
    def lowercase_keywords(cls, v: list[str]) -> list[str]:
        return [k.strip().lower() for k in v if k and k.strip()]


class BudgetConfig(BaseModel):
    """Budget thresholds used by scoring."""

    min_acceptable: float = Field(default=50_000, ge=0)
    min_preferred: float = Field(default=100_000, ge=0)

    @model_validator(mode="after")
    def preferred_gte_acceptable(self) -> "BudgetConfig":
        if self.min_preferred < self.min_acceptable:
            raise ValueError("min_preferred must be >= min_acceptable")
        return self


# =============================================================================
# Pre-filter Configuration
# =============================================================================


class PreFilterWeights(BaseModel):
    """Additive confidence weights for the heuristic classifier."""

    topical: float = Field(default=0.4, ge=0, le=1)
    project_type: float = Field(default=0.3, ge=0, le=1)
    technology: float = Field(default=0.2, ge=0, le=1)
    red_flag_penalty: float = Field(default=0.2, ge=0, le=1)
    promising_floor: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="Minimum confidence for an item to be promising",
    )


class PreFilterConfig(BaseModel):
    """Relevance pre-filter criteria."""

    classifier: ClassifierType = Field(default=ClassifierType.HEURISTIC)
    weights: PreFilterWeights = Field(default_factory=PreFilterWeights)
    min_confidence: float = Field(default=0.5, ge=0, le=1)
    require_topical_match: bool = True
    min_estimated_budget: float | None = Field(
        default=None,
        ge=0,
        description="Drop items whose estimated budget is known and below this",
    )
    exclude_red_flagged: bool = True
    max_results: int = Field(default=20, ge=1)


# =============================================================================
# Fetch / Analysis Configuration
# =============================================================================


class FetchConfig(BaseModel):
    """Detail fetch collaborator settings."""

    concurrency: int = Field(default=3, ge=1, le=32)
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_attachments: int = Field(default=5, ge=0)
    user_agent: str = Field(default="RFPScout/0.1")


class AnalysisConfig(BaseModel):
    """Fit analysis (scoring collaborator) settings."""

    provider: ScoringProvider = Field(default=ScoringProvider.RULES)
    model: str | None = Field(
        default=None,
        description="Model name; provider default when unset",
    )
    api_key: str | None = Field(
        default=None,
        description="API key, usually ${OPENAI_API_KEY} or ${ANTHROPIC_API_KEY}",
    )
    endpoint: str | None = Field(
        default=None,
        description="Override the provider's API base URL",
    )
    concurrency: int = Field(default=2, ge=1, le=16)
    temperature: float = Field(default=0.1, ge=0, le=2)
    max_tokens: int = Field(default=2000, ge=64)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_content_chars: int = Field(default=15_000, ge=500)
    analysis_type: str = Field(default="fit")

    @field_validator("api_key", "model", "endpoint")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        # ${VAR:-} expands to an empty string
        if v is not None and not v.strip():
            return None
        return v


class FitBandsConfig(BaseModel):
    """Score floors for the four fit bands (half-open, upward)."""

    excellent: int = Field(default=80, ge=0, le=100)
    good: int = Field(default=60, ge=0, le=100)
    poor: int = Field(default=25, ge=0, le=100)

    @model_validator(mode="after")
    def floors_descend(self) -> "FitBandsConfig":
        if not (self.excellent > self.good > self.poor):
            raise ValueError("band floors must satisfy excellent > good > poor")
        return self


class RetentionConfig(BaseModel):
    """Artifact retention/cleanup policy."""

    enabled: bool = True
    cleanup_poor_band: bool = True
    cleanup_rejected_band: bool = True
    preserve_audit_artifacts: bool = True
    audit_artifacts: list[str] = Field(
        default_factory=lambda: [
            "fit-report.html",
            "fit-report.md",
            "fit-analysis.json",
            "metadata.json",
        ],
        description="File names (or fnmatch patterns) kept when preserving audit artifacts",
    )
    custom_score_threshold: int | None = Field(
        default=None,
        description="When set, clean iff score is below it, ignoring band flags",
    )


# =============================================================================
# Storage Configuration
# =============================================================================


class StoreConfig(BaseModel):
    """Durable store transport settings."""

    transport: TransportType = Field(default=TransportType.NONE)
    remote_dir: Path = Field(
        default=Path("data-store"),
        description="Directory holding the long-lived store for local_dir transport",
    )
    filename: str = Field(default="rfpscout.db")
    lock_ttl_minutes: int = Field(default=120, ge=1)
    keep_backups: int = Field(default=5, ge=0)


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    url: str = Field(
        default="sqlite:///data/rfpscout.db",
        description="SQLAlchemy URL of the local copy of the durable store",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements (for debugging)",
    )

    @property
    def sqlite_path(self) -> Path | None:
        """Filesystem path for sqlite:/// URLs."""
        if self.url.startswith("sqlite:///") and ":memory:" not in self.url:
            return Path(self.url.replace("sqlite:///", "", 1))
        return None


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO")
    file: Path | None = Field(default=Path("logs/rfpscout.log"))
    json_format: bool = Field(default=True)
    rich_console: bool = Field(default=True)

    @field_validator("level")
    @classmethod
    def valid_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid:
            raise ValueError(f"level must be one of {valid}")
        return v_upper


class RetrySettings(BaseModel):
    """Retry policy for external calls."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    min_wait: float = Field(default=1.0, ge=0)
    max_wait: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=1.0, ge=0)
    jitter: bool = False


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    # Paths
    data_dir: Path = Field(default=Path("data"))
    artifacts_dir: Path = Field(
        default=Path("data/rfps"),
        description="Per-listing artifact directories",
    )
    reports_dir: Path = Field(default=Path("data/reports"))
    working_dir: Path = Field(
        default=Path("data/work"),
        description="Scratch space for the per-run working store",
    )

    # Components
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)
    keywords: KeywordConfig = Field(default_factory=KeywordConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    prefilter: PreFilterConfig = Field(default_factory=PreFilterConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    bands: FitBandsConfig = Field(default_factory=FitBandsConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    retry: RetrySettings = Field(default_factory=RetrySettings)

    def ensure_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.data_dir, self.artifacts_dir, self.reports_dir, self.working_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)

        db_path = self.database.sqlite_path
        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        if self.logging.file:
            self.logging.file.parent.mkdir(parents=True, exist_ok=True)

    def summary(self) -> dict[str, Any]:
        """Short, secret-free view used in logs."""
        return {
            "feed": self.feed.url,
            "classifier": self.prefilter.classifier.value,
            "provider": self.analysis.provider.value,
            "transport": self.store.transport.value,
            "bands": self.bands.model_dump(),
        }
