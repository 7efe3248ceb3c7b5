"""
Configuration loader for YAML files.

Loads and validates configuration from YAML files into Pydantic models.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import AppConfig

DEFAULT_CONFIG_PATH = Path("configs/app.yaml")

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    def __init__(self, message: str, path: Path | None = None, details: str | None = None):
        self.path = path
        self.details = details
        super().__init__(message)


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dictionary.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML contents

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML in {path}",
            path=path,
            details=str(e),
        ) from e
    except OSError as e:
        raise ConfigError(
            f"Cannot read {path}",
            path=path,
            details=str(e),
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping", path=path)
    return data


def _expand_env_vars(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively expand environment variables in string values.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        data: Dictionary with potential env var references

    Returns:
        Dictionary with expanded values
    """
    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2) or ""
        return os.environ.get(var_name, default)

    def expand_value(value: Any) -> Any:
        if isinstance(value, str):
            return _ENV_PATTERN.sub(replacer, value)
        elif isinstance(value, dict):
            return {k: expand_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [expand_value(item) for item in value]
        return value

    return expand_value(data)


def load_app_config(
    path: Path | str | None = None,
    expand_env: bool = True,
) -> AppConfig:
    """Load application configuration from YAML file.

    Args:
        path: Path to app.yaml (default: configs/app.yaml)
        expand_env: Whether to expand environment variables

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH
    else:
        path = Path(path)

    # If file doesn't exist, return defaults
    if not path.exists():
        return AppConfig()

    data = _load_yaml_file(path)

    if expand_env:
        data = _expand_env_vars(data)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid app configuration in {path}",
            path=path,
            details=str(e),
        ) from e


DEFAULT_APP_YAML = """\
# RFPScout configuration
# Values may reference environment variables: ${VAR} or ${VAR:-default}

data_dir: data
artifacts_dir: data/rfps
reports_dir: data/reports
working_dir: data/work

database:
  url: sqlite:///data/rfpscout.db
  echo: false

logging:
  level: INFO
  file: logs/rfpscout.log
  json_format: true
  rich_console: true

feed:
  url: ${RFP_FEED_URL:-https://feeds.feedburner.com/WebDesign-RFP}
  timeout_seconds: 10
  max_items: 200
  default_lookback_days: 7

prefilter:
  classifier: heuristic
  min_confidence: 0.5
  require_topical_match: true
  exclude_red_flagged: true
  max_results: 20

analysis:
  provider: rules          # rules | openai | anthropic
  api_key: ${OPENAI_API_KEY:-}
  concurrency: 2

bands:
  excellent: 80
  good: 60
  poor: 25

retention:
  enabled: true
  cleanup_poor_band: true
  cleanup_rejected_band: true
  preserve_audit_artifacts: true

store:
  transport: none          # none | local_dir
  remote_dir: data-store
  filename: rfpscout.db
  keep_backups: 5
"""


def write_default_config(path: Path | str = DEFAULT_CONFIG_PATH, force: bool = False) -> bool:
    """Write a commented default app.yaml.

    Returns:
        True if the file was written
    """
    path = Path(path)
    if path.exists() and not force:
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_APP_YAML, encoding="utf-8")
    return True
