"""
Job runner and the service facade used by the API.

The API only validates and queues; the scheduler's poll job calls
JobRunner.run_due() to do the work.
"""
import logging
import time
from datetime import date
from typing import Callable, List, Optional

from metricsync.core.config import settings
from metricsync.models import RunStatus, SyncJob, utcnow
from metricsync.schemas.backfill import SyncProgressPayload
from metricsync.services.backfill.batching import generate_date_batches
from metricsync.services.backfill.continuation import ContinuationScheduler
from metricsync.services.backfill.gaps import GapScanReport, GapScanService
from metricsync.services.backfill.jobs import (
    JOB_FULL_BACKFILL,
    JOB_GAP_SCAN,
    JOB_MONTH_IMPORT,
    JobQueue,
)
from metricsync.services.backfill.orchestrator import ImportOrchestrator, estimate_minutes
from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.progress import read_progress
from metricsync.services.backfill.projects import ensure_project_exists, load_project
from metricsync.services.backfill.run_log import RunLog
from metricsync.services.backfill.sync_client import SyncFunctionsClient

logger = logging.getLogger(__name__)


def _parse_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _close(client) -> None:
    close = getattr(client, "close", None)
    if callable(close):
        close()


class JobRunner:
    """Drains due jobs one at a time, recording each outcome on its row"""

    def __init__(
        self,
        session_factory,
        client_factory: Callable = SyncFunctionsClient,
        pacing: Optional[PacingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        queue: Optional[JobQueue] = None,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.pacing = pacing or PacingConfig.from_settings()
        self.sleep = sleep
        self.queue = queue or JobQueue(session_factory)

    def run_due(self, now=None, limit: Optional[int] = None) -> List[SyncJob]:
        """Claim and execute due jobs one at a time; failures are stored, never raised"""
        limit = limit or settings.JOB_BATCH_LIMIT
        finished: List[SyncJob] = []
        while len(finished) < limit:
            # Claim only the next job so the rest stay pending and cancellable
            claimed = self.queue.claim_due(now=now or utcnow(), limit=1)
            if not claimed:
                break
            finished.append(self.run_job(claimed[0]))
        return finished

    def run_job(self, job: SyncJob) -> SyncJob:
        logger.info(f"[JOBS] Running {job.job_type} {job.id} (project={job.project_id})")
        client = None
        try:
            client = self.client_factory()
            output, message = self._dispatch(job, client)
            done = self.queue.complete(job.id, output=output, message=message)
            logger.info(f"[JOBS] {job.job_type} {job.id} completed: {message}")
        except Exception as e:
            logger.exception(f"[JOBS] {job.job_type} {job.id} failed: {e}")
            done = self.queue.fail(job.id, e)
        finally:
            if client is not None:
                _close(client)
        return done or job

    def _dispatch(self, job: SyncJob, client):
        params = job.input_params or {}

        if job.job_type == JOB_FULL_BACKFILL:
            safe_mode = bool(params.get("safe_mode", False))
            project = load_project(self.session_factory, job.project_id)
            orchestrator = ImportOrchestrator(
                self.session_factory,
                client,
                self.pacing.for_mode(safe_mode),
                sleep=self.sleep,
            )
            run = orchestrator.run(project, _parse_date(params["since"]), _parse_date(params["until"]))
            return run.to_dict(), f"{run.status.value}: {run.total_records} records"

        if job.job_type == JOB_MONTH_IMPORT:
            scheduler = ContinuationScheduler(
                self.session_factory, client, self.pacing, sleep=self.sleep, queue=self.queue
            )
            result = scheduler.run_month(
                job.project_id,
                int(params["year"]),
                int(params["month"]),
                continue_chain=bool(params.get("continue_chain", False)),
                safe_mode=bool(params.get("safe_mode", True)),
            )
            status = "success" if result.success else "error"
            return result.to_dict(), f"{result.month_key} {status}: {result.records} records"

        if job.job_type == JOB_GAP_SCAN:
            service = GapScanService(self.session_factory, client, self.pacing, sleep=self.sleep)
            report = service.scan(
                project_id=job.project_id,
                since=_parse_date(params.get("since")),
                until=_parse_date(params.get("until")),
                auto_fix=bool(params.get("auto_fix", True)),
            )
            return report.to_dict(), f"{report.gaps_found} gaps, {report.gaps_fixed} fixed"

        raise ValueError(f"Unknown job type: {job.job_type}")


class BackfillService:
    """Entry points behind the backfill routes"""

    def __init__(
        self,
        session_factory,
        client_factory: Callable = SyncFunctionsClient,
        pacing: Optional[PacingConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.pacing = pacing or PacingConfig.from_settings()
        self.sleep = sleep
        self.queue = JobQueue(session_factory)

    def ensure_configured(self) -> None:
        """Raises ConfigurationError when the sync endpoint cannot be reached"""
        _close(self.client_factory())

    def _continuation(self, client=None) -> ContinuationScheduler:
        return ContinuationScheduler(self.session_factory, client, self.pacing, sleep=self.sleep, queue=self.queue)

    def start_historical_import(
        self,
        project_id: str,
        since: Optional[date] = None,
        until: Optional[date] = None,
        safe_mode: bool = False,
        today: Optional[date] = None,
    ) -> dict:
        today = today or date.today()
        since = since or date(today.year, 1, 1)
        until = until or today

        project = load_project(self.session_factory, project_id)
        self.ensure_configured()

        pacing = self.pacing.for_mode(safe_mode)
        total_batches = len(generate_date_batches(since, until, pacing.batch_size_days))

        job = self.queue.enqueue(
            JOB_FULL_BACKFILL,
            project_id=project.id,
            params={"since": since.isoformat(), "until": until.isoformat(), "safe_mode": safe_mode},
            triggered_by="api",
        )
        logger.info(f"[IMPORT] Queued historical import for {project.name}: {since} to {until} ({total_batches} batches)")

        return {
            "success": True,
            "message": "Historical import started in background",
            "project_id": project.id,
            "project_name": project.name,
            "range": {"since": since, "until": until},
            "total_batches": total_batches,
            "estimated_minutes": estimate_minutes(total_batches, pacing),
            "job_id": job.id,
        }

    def start_month_import(
        self,
        project_id: str,
        year: int,
        month: int,
        continue_chain: bool = False,
        safe_mode: bool = True,
    ) -> SyncJob:
        load_project(self.session_factory, project_id)
        self.ensure_configured()
        return self._continuation().enqueue_month(
            project_id, year, month, continue_chain=continue_chain, safe_mode=safe_mode
        )

    def plan_chain(self, project_id: str, start_year: int, start_month: int, today: Optional[date] = None):
        return self._continuation().plan_chain(project_id, start_year, start_month, today=today)

    def resume_chain(self, project_id: str, safe_mode: bool = True) -> Optional[SyncJob]:
        load_project(self.session_factory, project_id)
        self.ensure_configured()
        return self._continuation().resume_chain(project_id, safe_mode=safe_mode)

    def list_months(self, project_id: str):
        ensure_project_exists(self.session_factory, project_id)
        return self._continuation().list_months(project_id)

    def scan_gaps(
        self,
        project_id: Optional[str] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        auto_fix: bool = True,
    ) -> GapScanReport:
        """Synchronous detect (and heal) pass"""
        client = self.client_factory() if auto_fix else None
        try:
            service = GapScanService(self.session_factory, client, self.pacing, sleep=self.sleep)
            return service.scan(project_id=project_id, since=since, until=until, auto_fix=auto_fix)
        finally:
            if client is not None:
                _close(client)

    def get_job(self, job_id: str) -> Optional[SyncJob]:
        return self.queue.get(job_id)

    def list_jobs(self, project_id: str, limit: int = 50) -> List[SyncJob]:
        ensure_project_exists(self.session_factory, project_id)
        return self.queue.list_for_project(project_id, limit=limit)

    def cancel_job(self, job_id: str) -> bool:
        return self.queue.cancel(job_id)

    def get_progress(self, project_id: str) -> Optional[SyncProgressPayload]:
        ensure_project_exists(self.session_factory, project_id)
        return read_progress(self.session_factory, project_id)

    def recent_logs(self, project_id: str, limit: int = 50, status: Optional[RunStatus] = None):
        ensure_project_exists(self.session_factory, project_id)
        return RunLog(self.session_factory).recent(project_id, limit=limit, status=status)
