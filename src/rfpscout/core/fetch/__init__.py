"""Fetch utilities - retries and transient/permanent error markers."""

from .retries import PermanentError, RetryConfig, TransientError, retry_async

__all__ = [
    "PermanentError",
    "RetryConfig",
    "TransientError",
    "retry_async",
]
