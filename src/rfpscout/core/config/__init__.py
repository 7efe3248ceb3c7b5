"""Configuration loading and validation."""

from .models import (
    # Enums
    ClassifierType,
    ScoringProvider,
    TransportType,
    # Config models
    AppConfig,
    AnalysisConfig,
    BudgetConfig,
    DatabaseConfig,
    FeedConfig,
    FetchConfig,
    FitBandsConfig,
    KeywordConfig,
    LoggingConfig,
    PreFilterConfig,
    PreFilterWeights,
    RetentionConfig,
    RetrySettings,
    StoreConfig,
)
from .loader import DEFAULT_CONFIG_PATH, ConfigError, load_app_config, write_default_config

__all__ = [
    # Enums
    "ClassifierType",
    "ScoringProvider",
    "TransportType",
    # Config models
    "AppConfig",
    "AnalysisConfig",
    "BudgetConfig",
    "DatabaseConfig",
    "FeedConfig",
    "FetchConfig",
    "FitBandsConfig",
    "KeywordConfig",
    "LoggingConfig",
    "PreFilterConfig",
    "PreFilterWeights",
    "RetentionConfig",
    "RetrySettings",
    "StoreConfig",
    # Loaders
    "DEFAULT_CONFIG_PATH",
    "ConfigError",
    "load_app_config",
    "write_default_config",
]
