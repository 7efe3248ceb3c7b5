"""
Scoped access to the durable store.

``open_durable_store`` is the acquire/release boundary for a run: lock,
download, hand out a Database, upload on clean exit, unlock.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy.exc import SQLAlchemyError

from .db import Database
from .transport import StoreError, StoreTransport

logger = logging.getLogger(__name__)


@contextmanager
def open_durable_store(
    transport: StoreTransport,
    local_path: Path | str,
    holder_id: str,
    *,
    ttl_minutes: int = 120,
    upload: bool = True,
) -> Generator[Database, None, None]:
    """Open the durable store for the duration of a run.

    If the body raises, nothing is uploaded and the remote copy keeps its
    last uploaded state.

    Args:
        transport: Where the long-lived store lives
        local_path: Local file the store is downloaded to
        holder_id: Lock holder (the run id)
        ttl_minutes: Lock expiry
        upload: Push the store back on clean exit

    Yields:
        Database bound to the local copy

    Raises:
        StoreLockedError: Another run holds the store
        StoreError: Download or upload failed
    """
    local_path = Path(local_path)
    transport.acquire(holder_id, ttl_minutes)
    try:
        transport.download(local_path)
        try:
            db = Database.for_path(local_path)
        except SQLAlchemyError as e:
            raise StoreError(f"Cannot open store at {local_path}: {e}") from e

        try:
            yield db
        finally:
            db.dispose()

        if upload:
            transport.upload(local_path)
    finally:
        transport.release(holder_id)
