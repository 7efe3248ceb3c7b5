"""Detail fetch collaborators."""

from .base import (
    AttachmentPayload,
    AuthError,
    BackendError,
    DetailFetcher,
    FetchError,
    ListingDetail,
    RateLimitError,
    TransientFetchError,
)
from .http_backend import HttpDetailFetcher, check_response

__all__ = [
    # Base classes
    "AttachmentPayload",
    "DetailFetcher",
    "ListingDetail",
    # Errors
    "AuthError",
    "BackendError",
    "FetchError",
    "RateLimitError",
    "TransientFetchError",
    # HTTP fetcher
    "HttpDetailFetcher",
    "check_response",
]
