"""
Run lock management for the durable store.

A lock is a small JSON file beside the remote store copy holding the
holder id and an expiry. Expired locks may be taken over.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from pathlib import Path

import orjson

from rfpscout.core.normalize.parsing import utcnow


class LockManager:
    """Manages lock files for overlap protection."""

    def __init__(self, lock_dir: Path | str) -> None:
        self._lock_dir = Path(lock_dir)

    def _path(self, lock_name: str) -> Path:
        return self._lock_dir / f"{lock_name}.lock"

    def _read(self, lock_name: str) -> dict | None:
        path = self._path(lock_name)
        try:
            data = orjson.loads(path.read_bytes())
        except FileNotFoundError:
            return None
        except orjson.JSONDecodeError:
            # Torn write; treat as expired
            return {"holder_id": "", "expires_at": datetime.min.isoformat()}
        return data if isinstance(data, dict) else None

    def _write(self, lock_name: str, holder_id: str, ttl_minutes: int) -> None:
        now = utcnow()
        payload = {
            "holder_id": holder_id,
            "acquired_at": now.isoformat(),
            "expires_at": (now + timedelta(minutes=ttl_minutes)).isoformat(),
            "pid": os.getpid(),
        }
        path = self._path(lock_name)
        tmp = path.with_suffix(f".lock.{os.getpid()}.tmp")
        tmp.write_bytes(orjson.dumps(payload))
        os.replace(tmp, path)

    def acquire(self, lock_name: str, holder_id: str, ttl_minutes: int = 120) -> bool:
        """Acquire lock. Returns True if acquired, False if held by another."""
        self._lock_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(lock_name)

        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            lock = self._read(lock_name)
            if lock is not None:
                expires_at = datetime.fromisoformat(lock["expires_at"])
                if expires_at > utcnow() and lock.get("holder_id") != holder_id:
                    return False
        else:
            os.close(fd)

        self._write(lock_name, holder_id, ttl_minutes)
        return True

    def release(self, lock_name: str, holder_id: str) -> bool:
        """Release lock. Returns True if released, False if not held by us."""
        lock = self._read(lock_name)
        if lock is None or lock.get("holder_id") != holder_id:
            return False
        self._path(lock_name).unlink(missing_ok=True)
        return True

    def is_locked(self, lock_name: str) -> bool:
        """Check if lock is currently held (not expired)."""
        lock = self._read(lock_name)
        if lock is None:
            return False
        return datetime.fromisoformat(lock["expires_at"]) > utcnow()

    def holder(self, lock_name: str) -> str | None:
        lock = self._read(lock_name)
        return lock.get("holder_id") if lock else None
