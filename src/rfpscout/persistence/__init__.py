"""Durable store: schema, sessions, transports and run ledger."""

from .db import Database, sqlite_url
from .ledger import RunLedger, RunSummary, default_lower_bound
from .models import Base, FitVerdictRow, Listing, RunRecord
from .repo import ListingRepository, RunRepository, VerdictRepository
from .store import open_durable_store
from .transport import (
    LocalDirectoryTransport,
    NullTransport,
    StoreError,
    StoreLockedError,
    StoreTransport,
    UploadAck,
)

__all__ = [
    "Database",
    "sqlite_url",
    "RunLedger",
    "RunSummary",
    "default_lower_bound",
    "Base",
    "FitVerdictRow",
    "Listing",
    "RunRecord",
    "ListingRepository",
    "RunRepository",
    "VerdictRepository",
    "open_durable_store",
    "LocalDirectoryTransport",
    "NullTransport",
    "StoreError",
    "StoreLockedError",
    "StoreTransport",
    "UploadAck",
]
