from datetime import datetime, timedelta

import pytest

from rfpscout.persistence.db import Database
from rfpscout.persistence.ledger import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    RunLedger,
    RunSummary,
    default_lower_bound,
)
from rfpscout.persistence.locks import LockManager
from rfpscout.persistence.store import open_durable_store
from rfpscout.persistence.transport import (
    LocalDirectoryTransport,
    NullTransport,
    StoreLockedError,
)

T1 = datetime(2024, 1, 5, 6, 0)


@pytest.fixture
def ledger():
    db = Database.in_memory()
    yield RunLedger(db)
    db.dispose()


def test_lower_bound_comes_from_latest_completed_full_run(ledger):
    ledger.record_run(RunSummary(run_uid="run-1", kind="run", started_at=T1))
    ledger.record_run(RunSummary(run_uid="scrape-1", kind="scrape", started_at=T1 + timedelta(hours=1)))
    ledger.record_failure(
        RunSummary(run_uid="run-2", kind="run", started_at=T1 + timedelta(hours=2), items_found=9),
        RuntimeError("feed down"),
    )

    assert ledger.last_run_timestamp("run") == T1
    assert ledger.last_run_timestamp("scrape") == T1 + timedelta(hours=1)


def test_failure_marker_has_zero_counts(ledger):
    ledger.record_failure(RunSummary(run_uid="run-9", items_found=4, started_at=T1), ValueError("boom"))
    (record,) = ledger.recent()

    assert record.status == STATUS_FAILED
    assert record.items_found == 0
    assert record.error_message == "boom"
    assert record.finished_at is not None


def test_no_completed_run_means_no_lower_bound(ledger):
    assert ledger.last_run_timestamp() is None
    assert default_lower_bound(T1, 7) == T1 - timedelta(days=7)


def test_records_are_appended(ledger):
    for i in range(3):
        ledger.record_run(RunSummary(run_uid=f"run-{i}", started_at=T1 + timedelta(days=i)))

    recent = ledger.recent(limit=2)
    assert [r.run_uid for r in recent] == ["run-2", "run-1"]
    assert all(r.status == STATUS_COMPLETED for r in recent)


# =============================================================================
# Transports and the durable store scope
# =============================================================================


class RecordingTransport(NullTransport):
    def __init__(self, lock_dir):
        super().__init__(lock_dir=lock_dir)
        self.uploads = []

    def upload(self, src):
        self.uploads.append(src)
        return super().upload(src)


def test_store_uploaded_on_clean_exit(tmp_path):
    transport = RecordingTransport(tmp_path)
    with open_durable_store(transport, tmp_path / "store.db", "run-a") as db:
        RunLedger(db).record_run(RunSummary(run_uid="run-a"))

    assert transport.uploads == [tmp_path / "store.db"]
    assert not LockManager(tmp_path).is_locked("store")


def test_store_not_uploaded_when_body_raises(tmp_path):
    transport = RecordingTransport(tmp_path)
    with pytest.raises(RuntimeError):
        with open_durable_store(transport, tmp_path / "store.db", "run-a"):
            raise RuntimeError("merge exploded")

    assert transport.uploads == []
    assert not LockManager(tmp_path).is_locked("store")


def test_concurrent_holder_is_refused(tmp_path):
    transport = NullTransport(lock_dir=tmp_path)
    transport.acquire("run-a")

    with pytest.raises(StoreLockedError) as exc_info:
        with open_durable_store(transport, tmp_path / "store.db", "run-b"):
            pass
    assert exc_info.value.holder == "run-a"


def test_expired_lock_is_taken_over(tmp_path):
    locks = LockManager(tmp_path)
    locks.acquire("store", "run-a", ttl_minutes=0)

    assert locks.acquire("store", "run-b")
    assert locks.holder("store") == "run-b"


def test_local_directory_round_trip(tmp_path):
    transport = LocalDirectoryTransport(tmp_path / "remote", filename="store.db")
    local = tmp_path / "local" / "store.db"
    local.parent.mkdir()
    local.write_bytes(b"stale copy")

    assert transport.download(local) is None
    assert not local.exists()

    source = tmp_path / "built.db"
    source.write_bytes(b"v1")
    ack = transport.upload(source)

    assert ack.size == 2
    assert transport.download(local) == local
    assert local.read_bytes() == b"v1"


def test_upload_rotates_previous_copy(tmp_path):
    transport = LocalDirectoryTransport(tmp_path / "remote", filename="store.db", keep_backups=2)
    source = tmp_path / "built.db"
    for version in (b"v1", b"v2"):
        source.write_bytes(version)
        transport.upload(source)

    backups = list(transport.backup_dir.glob("store.db.*.bak"))
    assert [b.read_bytes() for b in backups] == [b"v1"]
    assert transport.remote_path.read_bytes() == b"v2"


def test_prune_keeps_newest_backups(tmp_path):
    transport = LocalDirectoryTransport(tmp_path / "remote", filename="store.db", keep_backups=2)
    transport.backup_dir.mkdir(parents=True)
    for stamp in ("20240101T000000000000", "20240102T000000000000", "20240103T000000000000"):
        (transport.backup_dir / f"store.db.{stamp}.bak").write_bytes(b"x")

    assert transport.prune_backups() == 1
    assert sorted(p.name for p in transport.backup_dir.iterdir()) == [
        "store.db.20240102T000000000000.bak",
        "store.db.20240103T000000000000.bak",
    ]
