"""Newest-wins merge into the durable store."""

from .engine import MergeEngine, MergeResult

__all__ = ["MergeEngine", "MergeResult"]
