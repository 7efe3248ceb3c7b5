from datetime import timedelta

import orjson
from typer.testing import CliRunner

from conftest import FakeFetcher, FakeScorer, feed_transport, scoring_payload
from rfpscout import __version__
from rfpscout.cli.main import app
from rfpscout.core.analysis.verdict import FitRating, FitVerdict
from rfpscout.core.config import load_app_config
from rfpscout.core.merge import MergeEngine
from rfpscout.core.normalize.parsing import utcnow
from rfpscout.core.orchestrator import build_runner
from rfpscout.core.retention import CleanupEngine
from rfpscout.persistence.db import Database
from rfpscout.persistence.locks import LockManager

runner = CliRunner()


def fake_build_runner(scorer_reply=None, status_code=200):
    def build(config):
        return build_runner(
            config,
            fetcher=FakeFetcher(),
            scorer=FakeScorer(scorer_reply or scoring_payload(85)),
            feed_transport=feed_transport(status_code=status_code),
        )

    return build


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_creates_config_and_store(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init"])

    assert result.exit_code == 0, result.output
    assert (tmp_path / "configs" / "app.yaml").exists()
    assert (tmp_path / "data" / "rfpscout.db").exists()
    assert (tmp_path / "data" / "reports").is_dir()


def test_status_without_store_exits_nonzero(config_file):
    result = runner.invoke(app, ["status", "--config", str(config_file)])
    assert result.exit_code == 1


def test_invalid_config_exits_nonzero(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text("bands:\n  excellent: 10\n", encoding="utf-8")

    result = runner.invoke(app, ["status", "--config", str(path)])
    assert result.exit_code == 1


def test_run_then_status(config_file, monkeypatch):
    monkeypatch.setattr("rfpscout.cli.commands.pipeline.build_runner", fake_build_runner())

    result = runner.invoke(app, ["run", "--since", "2024-01-03", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert "Promising" in result.stdout

    result = runner.invoke(app, ["status", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert "Recent Runs" in result.stdout
    assert "excellent" in result.stdout


def test_scrape_command(config_file, monkeypatch):
    monkeypatch.setattr("rfpscout.cli.commands.pipeline.build_runner", fake_build_runner())

    result = runner.invoke(app, ["scrape", "--since", "2024-01-03", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert "Fetched" in result.stdout
    assert "High fit" not in result.stdout


def test_failed_run_exits_nonzero(config_file, monkeypatch):
    monkeypatch.setattr("rfpscout.cli.commands.pipeline.build_runner", fake_build_runner(status_code=500))

    result = runner.invoke(app, ["run", "--config", str(config_file)])
    assert result.exit_code == 1


def test_unrecognized_since_is_rejected(config_file):
    result = runner.invoke(app, ["run", "--since", "zzzz-not-a-date", "--config", str(config_file)])
    assert result.exit_code == 2


def seed_poor_listing(config):
    db = Database.for_path(config.database.sqlite_path)
    try:
        MergeEngine(db).merge(
            [],
            [FitVerdict("old-rfp", score=30, rating=FitRating.POOR, confidence=50, analyzed_at=utcnow() - timedelta(days=40))],
        )
    finally:
        db.dispose()

    directory = config.artifacts_dir / "old-rfp"
    directory.mkdir(parents=True)
    (directory / "scope.pdf").write_bytes(b"%PDF")
    (directory / "metadata.json").write_bytes(b"{}")
    return directory


def test_cleanup_dry_run_then_apply(config_file):
    config = load_app_config(config_file)
    directory = seed_poor_listing(config)

    result = runner.invoke(app, ["cleanup", "--dry-run", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert (directory / "scope.pdf").exists()
    (report,) = config.reports_dir.glob("cleanup-report-*.json")
    payload = orjson.loads(report.read_bytes())
    assert payload["dryRun"] is True
    assert payload["cleanedRFPs"] == ["old-rfp"]

    result = runner.invoke(app, ["cleanup", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert sorted(p.name for p in directory.iterdir()) == ["metadata.json"]


def test_cleanup_days_window_excludes_recent(config_file):
    config = load_app_config(config_file)
    directory = seed_poor_listing(config)

    result = runner.invoke(app, ["cleanup", "--days", "60", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert (directory / "scope.pdf").exists()


def test_cleanup_removes_files_while_holding_the_store_lock(config_file, monkeypatch):
    config = load_app_config(config_file)
    seed_poor_listing(config)
    lock_states = []

    class RecordingCleanupEngine(CleanupEngine):
        def cleanup(self, verdicts, options):
            lock_states.append(LockManager(config.data_dir).is_locked("store"))
            return super().cleanup(verdicts, options)

    monkeypatch.setattr("rfpscout.cli.commands.cleanup.CleanupEngine", RecordingCleanupEngine)

    result = runner.invoke(app, ["cleanup", "--config", str(config_file)])
    assert result.exit_code == 0, result.output
    assert lock_states == [True]
    assert not LockManager(config.data_dir).is_locked("store")
