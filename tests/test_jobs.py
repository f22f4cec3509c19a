"""
Tests for the job queue, the job runner and the service facade.
"""

from datetime import date, timedelta

import pytest

from conftest import FakeSyncClient
from metricsync.models import SyncJob, TaskStatus, utcnow
from metricsync.services.backfill.errors import ConfigurationError, ProjectNotFoundError
from metricsync.services.backfill.jobs import (
    JOB_FULL_BACKFILL,
    JOB_GAP_SCAN,
    JOB_MONTH_IMPORT,
    JobQueue,
    month_job_key,
)
from metricsync.services.backfill.progress import read_progress
from metricsync.services.backfill.runner import BackfillService, JobRunner


@pytest.fixture
def queue(session_factory) -> JobQueue:
    return JobQueue(session_factory)


@pytest.fixture
def client_factory(fake_client):
    return lambda: fake_client


@pytest.fixture
def runner(session_factory, client_factory, pacing, sleep, queue) -> JobRunner:
    return JobRunner(session_factory, client_factory, pacing, sleep=sleep, queue=queue)


@pytest.fixture
def service(session_factory, client_factory, pacing, sleep) -> BackfillService:
    return BackfillService(session_factory, client_factory, pacing, sleep=sleep)


class TestJobQueue:
    """Test queue persistence and lifecycle transitions."""

    def test_enqueue_and_get(self, queue, project):
        job = queue.enqueue(JOB_FULL_BACKFILL, project_id=project.id, params={"since": "2025-01-01"})
        loaded = queue.get(job.id)

        assert loaded.status == TaskStatus.PENDING
        assert loaded.input_params == {"since": "2025-01-01"}
        assert loaded.attempts == 0

    def test_enqueue_unknown_type(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue("reindex")

    def test_same_key_returns_pending_job(self, queue, project):
        key = month_job_key(project.id, 2025, 3)
        first = queue.enqueue(JOB_MONTH_IMPORT, project_id=project.id, job_key=key)
        second = queue.enqueue(JOB_MONTH_IMPORT, project_id=project.id, job_key=key)
        assert first.id == second.id

    def test_key_reusable_after_completion(self, queue, project):
        key = month_job_key(project.id, 2025, 3)
        first = queue.enqueue(JOB_MONTH_IMPORT, project_id=project.id, job_key=key)
        queue.claim_due()
        queue.complete(first.id)

        second = queue.enqueue(JOB_MONTH_IMPORT, project_id=project.id, job_key=key)
        assert second.id != first.id

    def test_claim_due_skips_future_jobs(self, queue):
        now = utcnow()
        due = queue.enqueue(JOB_GAP_SCAN, run_at=now - timedelta(seconds=1))
        queue.enqueue(JOB_GAP_SCAN, run_at=now + timedelta(minutes=5))

        claimed = queue.claim_due(now=now)

        assert [j.id for j in claimed] == [due.id]
        assert claimed[0].status == TaskStatus.RUNNING
        assert claimed[0].attempts == 1

    def test_claim_due_oldest_first_with_limit(self, queue):
        now = utcnow()
        late = queue.enqueue(JOB_GAP_SCAN, run_at=now - timedelta(seconds=10))
        early = queue.enqueue(JOB_GAP_SCAN, run_at=now - timedelta(seconds=60))

        claimed = queue.claim_due(now=now, limit=1)
        assert [j.id for j in claimed] == [early.id]
        assert queue.get(late.id).status == TaskStatus.PENDING

    def test_fail_keeps_traceback(self, queue):
        job = queue.enqueue(JOB_GAP_SCAN)
        queue.claim_due()
        try:
            raise RuntimeError("kaput")
        except RuntimeError as e:
            queue.fail(job.id, e)

        failed = queue.get(job.id)
        assert failed.status == TaskStatus.FAILED
        assert failed.error_message == "kaput"
        assert "RuntimeError" in failed.error_traceback
        assert failed.completed_at is not None

    def test_cancel_only_pending(self, queue):
        pending = queue.enqueue(JOB_GAP_SCAN)
        assert queue.cancel(pending.id)
        assert queue.get(pending.id).status == TaskStatus.CANCELLED
        assert not queue.cancel(pending.id)

    def test_cleanup_stale_running(self, queue, session_factory):
        five_hours_ago = utcnow() - timedelta(hours=5)
        job = queue.enqueue(JOB_GAP_SCAN, run_at=five_hours_ago)
        queue.claim_due(now=five_hours_ago)
        fresh = queue.enqueue(JOB_GAP_SCAN)
        queue.claim_due()

        assert queue.cleanup_stale_running(stale_minutes=180) == 1
        assert queue.get(job.id).status == TaskStatus.FAILED
        assert queue.get(fresh.id).status == TaskStatus.RUNNING

    def test_list_for_project(self, queue, project):
        queue.enqueue(JOB_FULL_BACKFILL, project_id=project.id)
        queue.enqueue(JOB_GAP_SCAN)
        assert len(queue.list_for_project(project.id)) == 1


class TestJobRunner:
    """Test draining jobs by type."""

    def test_full_backfill(self, runner, queue, project, session_factory):
        job = queue.enqueue(
            JOB_FULL_BACKFILL,
            project_id=project.id,
            params={"since": "2025-01-01", "until": "2025-02-28", "safe_mode": False},
        )
        finished = runner.run_due()

        assert [j.id for j in finished] == [job.id]
        done = queue.get(job.id)
        assert done.status == TaskStatus.COMPLETED
        assert done.output_data["status"] == "success"
        assert done.output_data["total_batches"] == 2
        assert read_progress(session_factory, project.id).progress == 100

    def test_month_chain_link_queues_next(self, runner, queue, project, session_factory):
        """Running a chained link completes it and leaves the next month waiting on its cooldown."""
        last_month = (date.today().replace(day=1) - timedelta(days=1))
        job = queue.enqueue(
            JOB_MONTH_IMPORT,
            project_id=project.id,
            params={"year": last_month.year, "month": last_month.month, "continue_chain": True, "safe_mode": False},
            job_key=month_job_key(project.id, last_month.year, last_month.month),
        )
        runner.run_due()

        assert queue.get(job.id).status == TaskStatus.COMPLETED
        pending = [j for j in queue.list_for_project(project.id) if j.status == TaskStatus.PENDING]
        assert len(pending) == 1
        assert pending[0].run_at > utcnow()
        # Not due yet
        assert runner.run_due() == []

    def test_gap_scan(self, runner, queue, project):
        job = queue.enqueue(
            JOB_GAP_SCAN,
            project_id=project.id,
            params={"since": "2025-01-01", "until": "2025-01-31", "auto_fix": True},
        )
        runner.run_due()

        done = queue.get(job.id)
        assert done.status == TaskStatus.COMPLETED
        assert done.output_data["gaps_found"] == 1
        assert done.output_data["gaps_fixed"] == 1

    def test_gap_scan_detect_only_completes(self, runner, queue, project):
        """The stored report is plain JSON, with dates as ISO strings."""
        job = queue.enqueue(
            JOB_GAP_SCAN,
            project_id=project.id,
            params={"since": "2025-01-01", "until": "2025-01-31", "auto_fix": False},
        )
        runner.run_due()

        done = queue.get(job.id)
        assert done.status == TaskStatus.COMPLETED
        assert done.output_data["gaps"][0]["gap_start"] == "2025-01-01"
        assert done.output_data["gaps"][0]["gap_end"] == "2025-01-31"
        assert done.output_data["fix_results"] == []

    def test_queued_job_stays_pending_while_another_runs(self, session_factory, client_factory, pacing, queue, project):
        """Jobs are claimed one by one, so the next one can still be cancelled."""
        first = queue.enqueue(
            JOB_FULL_BACKFILL,
            project_id=project.id,
            params={"since": "2025-01-01", "until": "2025-02-28", "safe_mode": False},
            run_at=utcnow() - timedelta(minutes=1),
        )
        second = queue.enqueue(JOB_GAP_SCAN, params={"auto_fix": False})
        seen = []

        def sleep_hook(seconds):
            if seen:
                return
            seen.append(queue.get(second.id).status)
            seen.append(queue.cancel(second.id))

        runner = JobRunner(session_factory, client_factory, pacing, sleep=sleep_hook, queue=queue)
        finished = runner.run_due()

        assert seen == [TaskStatus.PENDING, True]
        assert [j.id for j in finished] == [first.id]
        assert queue.get(second.id).status == TaskStatus.CANCELLED

    def test_run_due_respects_limit(self, runner, queue):
        first = queue.enqueue(JOB_GAP_SCAN, params={"auto_fix": False}, run_at=utcnow() - timedelta(minutes=1))
        second = queue.enqueue(JOB_GAP_SCAN, params={"auto_fix": False})

        finished = runner.run_due(limit=1)

        assert [j.id for j in finished] == [first.id]
        assert queue.get(second.id).status == TaskStatus.PENDING

    def test_failure_is_captured(self, runner, queue):
        """An exception marks the job failed and the runner keeps going."""
        broken = queue.enqueue(JOB_FULL_BACKFILL, project_id="missing", params={"since": "2025-01-01", "until": "2025-01-02"})
        ok = queue.enqueue(JOB_GAP_SCAN, params={"since": "2025-01-01", "until": "2025-01-31", "auto_fix": False})

        runner.run_due()

        failed = queue.get(broken.id)
        assert failed.status == TaskStatus.FAILED
        assert "Project not found" in failed.error_message
        assert queue.get(ok.id).status == TaskStatus.COMPLETED

    def test_client_is_closed(self, runner, queue, fake_client):
        queue.enqueue(JOB_GAP_SCAN, params={"auto_fix": False})
        runner.run_due()
        assert fake_client.closed


class TestBackfillService:
    """Test validation and queueing behind the API."""

    def test_start_historical_import(self, service, project, session_factory):
        result = service.start_historical_import(
            project.id, since=date(2025, 1, 1), until=date(2025, 3, 31)
        )

        assert result["success"] is True
        assert result["project_name"] == "Acme Ads"
        assert result["total_batches"] == 3
        assert result["estimated_minutes"] > 0

        db = session_factory()
        try:
            job = db.query(SyncJob).filter(SyncJob.id == result["job_id"]).one()
        finally:
            db.close()
        assert job.job_type == JOB_FULL_BACKFILL
        assert job.input_params["since"] == "2025-01-01"

    def test_default_range(self, service, project):
        result = service.start_historical_import(project.id, today=date(2025, 3, 10))
        assert result["range"] == {"since": date(2025, 1, 1), "until": date(2025, 3, 10)}

    def test_unknown_project(self, service):
        with pytest.raises(ProjectNotFoundError):
            service.start_historical_import("missing")

    def test_project_without_ad_account(self, service, other_projects):
        with pytest.raises(ConfigurationError):
            service.start_historical_import("proj-noacct")

    def test_missing_sync_configuration(self, session_factory, project, pacing):
        """Nothing is queued when the sync endpoint is not configured."""
        def unconfigured():
            raise ConfigurationError("SYNC_FUNCTIONS_URL and SYNC_SERVICE_KEY must be configured")

        service = BackfillService(session_factory, unconfigured, pacing)
        with pytest.raises(ConfigurationError):
            service.start_historical_import(project.id)
        assert service.list_jobs(project.id) == []

    def test_start_month_import(self, service, project):
        job = service.start_month_import(project.id, 2025, 2, continue_chain=True)
        assert job.job_key == month_job_key(project.id, 2025, 2)
        assert job.input_params["continue_chain"] is True
