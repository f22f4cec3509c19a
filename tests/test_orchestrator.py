"""
Tests for the full historical import run.
"""

import json
from datetime import date, timedelta

import pytest

from conftest import FakeSyncClient
from metricsync.models import Project, RunStatus, SyncLog
from metricsync.services.backfill.orchestrator import ImportOrchestrator, batch_progress, estimate_minutes
from metricsync.services.backfill.progress import ProgressReporter, read_progress
from metricsync.services.backfill.sync_client import SyncResponse

SINCE = date(2024, 1, 1)
UNTIL = SINCE + timedelta(days=299)  # 10 batches of 30 days


def _project_row(session_factory, project_id="proj-1"):
    db = session_factory()
    try:
        return db.query(Project).filter(Project.id == project_id).first()
    finally:
        db.close()


def _logs(session_factory):
    db = session_factory()
    try:
        return db.query(SyncLog).order_by(SyncLog.id).all()
    finally:
        db.close()


class TestProgressMath:
    """Test progress percentages and duration estimates."""

    def test_batch_progress_reaches_ninety(self):
        assert batch_progress(0, 10) == 9
        assert batch_progress(9, 10) == 90

    def test_batch_progress_rounds_halves_up(self):
        """4 batches: 22.5 reports as 23."""
        assert batch_progress(0, 4) == 23
        assert batch_progress(3, 4) == 90

    def test_estimate_minutes(self, pacing):
        assert estimate_minutes(0, pacing) == 0.0
        # 10 * 30s + 9 * 5s = 345s
        assert estimate_minutes(10, pacing) == 5.8


class TestImportOrchestrator:
    """Test batch sequencing, status and persistence of one run."""

    def test_all_batches_succeed(self, session_factory, project, pacing, sleep):
        client = FakeSyncClient(records=10)
        run = ImportOrchestrator(session_factory, client, pacing, sleep=sleep).run(project, SINCE, UNTIL)

        assert run.status == RunStatus.SUCCESS
        assert run.total_records == 100
        assert len(client.window_calls) == 10
        assert [c["breakdown"] for c in client.breakdown_calls] == [
            "gender", "age", "device_platform", "publisher_platform",
        ]

        row = _project_row(session_factory)
        assert row.webhook_status == "success"
        assert row.last_sync_at is not None

    def test_two_failed_batches_make_partial(self, session_factory, project, pacing, sleep):
        """8 of 10 batches succeed: partial, 80 records, progress ends at 100."""
        failing = {SINCE + timedelta(days=60), SINCE + timedelta(days=150)}

        def script(date_range, n):
            if date_range.since in failing:
                return SyncResponse(success=False, error="Invalid parameter")
            return SyncResponse(success=True, records=10)

        client = FakeSyncClient(script=script)
        run = ImportOrchestrator(session_factory, client, pacing, sleep=sleep).run(project, SINCE, UNTIL)

        assert run.status == RunStatus.PARTIAL
        assert run.success_batches == 8
        assert run.failed_batches == 2
        assert run.total_records == 80

        progress = read_progress(session_factory, project.id)
        assert progress.progress == 100
        assert progress.status.value == "partial"

        logs = _logs(session_factory)
        assert len(logs) == 1
        assert logs[0].status == "partial"
        payload = json.loads(logs[0].message)
        assert payload["type"] == "historical_import"
        assert payload["total_records"] == 80
        assert payload["failed_batches"] == 2

    def test_batches_run_in_order_with_delays(self, session_factory, project, pacing, sleep):
        client = FakeSyncClient()
        ImportOrchestrator(session_factory, client, pacing, sleep=sleep, breakdowns=[]).run(project, SINCE, UNTIL)

        starts = [c["date_range"].since for c in client.window_calls]
        assert starts == sorted(starts)
        # No pause after the last batch
        assert sleep.calls == [5] * 9

    def test_failed_demographics_do_not_change_status(self, session_factory, project, pacing, sleep):
        client = FakeSyncClient(breakdown_failures=["age"])
        run = ImportOrchestrator(session_factory, client, pacing, sleep=sleep).run(project, SINCE, UNTIL)

        assert run.status == RunStatus.SUCCESS
        assert run.demographics_failed == ["age"]

    def test_empty_range_is_success(self, session_factory, project, pacing, sleep):
        """since after until plans zero batches and still finalizes."""
        client = FakeSyncClient()
        run = ImportOrchestrator(session_factory, client, pacing, sleep=sleep).run(
            project, date(2025, 2, 1), date(2025, 1, 1)
        )

        assert run.status == RunStatus.SUCCESS
        assert run.total_records == 0
        assert client.window_calls == []
        assert read_progress(session_factory, project.id).progress == 100

    def test_safe_mode_slows_batches(self, session_factory, project, pacing, sleep):
        client = FakeSyncClient()
        ImportOrchestrator(session_factory, client, pacing.safe_mode(), sleep=sleep, breakdowns=[]).run(
            project, SINCE, SINCE + timedelta(days=59)
        )
        assert sleep.calls == [7.5]

    def test_unexpected_error_marks_run_failed(self, session_factory, project, pacing, sleep, monkeypatch):
        """An exception outside the window loop is recorded and re-raised."""
        orchestrator = ImportOrchestrator(session_factory, FakeSyncClient(), pacing, sleep=sleep)

        def explode(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(orchestrator, "_sync_demographics", explode)

        with pytest.raises(RuntimeError):
            orchestrator.run(project, SINCE, UNTIL)

        assert _project_row(session_factory).webhook_status == "error"
        logs = _logs(session_factory)
        assert logs[-1].status == "error"
        assert json.loads(logs[-1].message)["error"] == "database went away"


class TestProgressReporting:
    """Test the progress values written during a run."""

    def test_written_percent_sequence(self, session_factory, project, pacing, sleep, monkeypatch):
        written = []
        original = ProgressReporter._write

        def recording_write(self, status, message, phase, final=False):
            written.append((self.percent, phase))
            return original(self, status, message, phase, final=final)

        monkeypatch.setattr(ProgressReporter, "_write", recording_write)
        ImportOrchestrator(session_factory, FakeSyncClient(), pacing, sleep=sleep).run(project, SINCE, UNTIL)

        assert [p for p, _ in written] == [0, 9, 18, 27, 36, 45, 54, 63, 72, 81, 90, 90, 100]
        assert [phase for _, phase in written[-2:]] == ["demographics", "done"]

    def test_percent_never_decreases(self, session_factory, project):
        reporter = ProgressReporter(session_factory, project.id)
        reporter.start()
        reporter.update(40, "Batch 4/10")
        payload = reporter.update(20, "Batch 2/10")

        assert payload.progress == 40
        assert read_progress(session_factory, project.id).progress == 40

    def test_percent_capped_at_hundred(self, session_factory, project):
        reporter = ProgressReporter(session_factory, project.id)
        reporter.start()
        assert reporter.update(140, "overshoot").progress == 100
