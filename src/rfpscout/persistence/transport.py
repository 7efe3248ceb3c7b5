"""
Durable store transports.

A transport moves the whole store file between wherever the long-lived copy
lives and a local working path. Both directions are all-or-nothing: the
destination is only ever replaced by a fully written temp file.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from rfpscout.core.normalize.parsing import utcnow

from .locks import LockManager

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Durable store download/upload failure (fatal to the run)."""


class StoreLockedError(StoreError):
    """Another run holds the durable store."""

    def __init__(self, message: str, holder: str | None = None):
        super().__init__(message)
        self.holder = holder


@dataclass(frozen=True)
class UploadAck:
    """Confirmation of a completed upload."""

    location: str
    size: int
    sha256: str


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def atomic_copy(src: Path, dest: Path) -> None:
    """Copy ``src`` over ``dest`` via a temp file and ``os.replace``."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(f".{dest.name}.{os.getpid()}.tmp")
    try:
        shutil.copyfile(src, tmp)
        os.replace(tmp, dest)
    finally:
        tmp.unlink(missing_ok=True)


class StoreTransport(ABC):
    """Pull/push pair for the durable store."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Transport identifier."""

    @abstractmethod
    def download(self, dest: Path) -> Path | None:
        """Fetch the durable store to ``dest``.

        Returns:
            ``dest``, or None when no remote copy exists yet

        Raises:
            StoreError: On transfer failure
        """

    @abstractmethod
    def upload(self, src: Path) -> UploadAck:
        """Push ``src`` as the new durable store.

        Raises:
            StoreError: On transfer failure
        """

    def acquire(self, holder_id: str, ttl_minutes: int = 120) -> None:
        """Claim exclusive use of the store. Raises StoreLockedError."""

    def release(self, holder_id: str) -> None:
        """Give up the claim taken by ``acquire``."""

    def describe(self) -> str:
        return self.name


class NullTransport(StoreTransport):
    """The local copy is the durable store; nothing is moved."""

    def __init__(self, lock_dir: Path | str | None = None) -> None:
        self._locks = LockManager(lock_dir) if lock_dir is not None else None

    @property
    def name(self) -> str:
        return "none"

    def download(self, dest: Path) -> Path | None:
        return dest if dest.exists() else None

    def upload(self, src: Path) -> UploadAck:
        return UploadAck(location=str(src), size=src.stat().st_size, sha256=_sha256(src))

    def acquire(self, holder_id: str, ttl_minutes: int = 120) -> None:
        if self._locks and not self._locks.acquire("store", holder_id, ttl_minutes):
            holder = self._locks.holder("store")
            raise StoreLockedError(f"Store is locked by {holder}", holder=holder)

    def release(self, holder_id: str) -> None:
        if self._locks:
            self._locks.release("store", holder_id)


class LocalDirectoryTransport(StoreTransport):
    """Keeps the durable store in a directory (a mounted volume or share).

    On upload the previous copy is rotated into ``backups/`` and only the
    newest ``keep_backups`` are kept.
    """

    def __init__(
        self,
        remote_dir: Path | str,
        filename: str = "rfpscout.db",
        keep_backups: int = 5,
    ) -> None:
        self.remote_dir = Path(remote_dir)
        self.filename = filename
        self.keep_backups = keep_backups
        self._locks = LockManager(self.remote_dir)

    @property
    def name(self) -> str:
        return "local_dir"

    @property
    def remote_path(self) -> Path:
        return self.remote_dir / self.filename

    @property
    def backup_dir(self) -> Path:
        return self.remote_dir / "backups"

    def describe(self) -> str:
        return f"local_dir:{self.remote_path}"

    def download(self, dest: Path) -> Path | None:
        if not self.remote_path.exists():
            logger.info(f"No durable store at {self.remote_path}; starting fresh")
            dest.unlink(missing_ok=True)
            return None
        try:
            atomic_copy(self.remote_path, dest)
        except OSError as e:
            raise StoreError(f"Download from {self.remote_path} failed: {e}") from e
        logger.info(f"Downloaded durable store ({dest.stat().st_size} bytes) from {self.remote_path}")
        return dest

    def upload(self, src: Path) -> UploadAck:
        if not src.exists():
            raise StoreError(f"Nothing to upload: {src} does not exist")
        try:
            if self.remote_path.exists() and self.keep_backups > 0:
                self._rotate_backup()
            atomic_copy(src, self.remote_path)
        except OSError as e:
            raise StoreError(f"Upload to {self.remote_path} failed: {e}") from e

        ack = UploadAck(
            location=str(self.remote_path),
            size=self.remote_path.stat().st_size,
            sha256=_sha256(self.remote_path),
        )
        logger.info(f"Uploaded durable store ({ack.size} bytes) to {ack.location}")
        return ack

    def _rotate_backup(self) -> None:
        stamp = utcnow().strftime("%Y%m%dT%H%M%S%f")
        atomic_copy(self.remote_path, self.backup_dir / f"{self.filename}.{stamp}.bak")
        self.prune_backups()

    def prune_backups(self) -> int:
        """Delete all but the newest ``keep_backups`` backups."""
        if not self.backup_dir.exists():
            return 0
        backups = sorted(self.backup_dir.glob(f"{self.filename}.*.bak"), reverse=True)
        removed = 0
        for old in backups[self.keep_backups:]:
            old.unlink(missing_ok=True)
            removed += 1
        if removed:
            logger.debug(f"Pruned {removed} old store backups")
        return removed

    def acquire(self, holder_id: str, ttl_minutes: int = 120) -> None:
        if not self._locks.acquire("store", holder_id, ttl_minutes):
            holder = self._locks.holder("store")
            raise StoreLockedError(f"Durable store at {self.remote_dir} is locked by {holder}", holder=holder)

    def release(self, holder_id: str) -> None:
        self._locks.release("store", holder_id)
