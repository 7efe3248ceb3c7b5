"""Orchestrator - stage coordination for pipeline runs."""

from .detail import DetailFetchOrchestrator, FetchBatch
from .runner import (
    MODE_RUN,
    MODE_SCRAPE,
    PipelineError,
    PipelineRunner,
    RunStats,
    build_runner,
    build_scorer,
    build_transport,
)

__all__ = [
    "DetailFetchOrchestrator",
    "FetchBatch",
    "MODE_RUN",
    "MODE_SCRAPE",
    "PipelineError",
    "PipelineRunner",
    "RunStats",
    "build_runner",
    "build_scorer",
    "build_transport",
]
