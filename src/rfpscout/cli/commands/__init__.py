"""CLI command modules."""

from . import cleanup, pipeline

__all__ = [
    "cleanup",
    "pipeline",
]
