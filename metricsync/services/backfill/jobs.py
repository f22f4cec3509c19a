"""
Job queue over the sync_jobs table.

Rows are claimed by the scheduler's poll job; a row with run_at in the
future is a delayed job (the next link of a month chain).
"""
import logging
import traceback
from datetime import datetime, timedelta
from typing import List, Optional

from metricsync.models import JobType, SyncJob, TaskStatus, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

JOB_FULL_BACKFILL = JobType.FULL_BACKFILL.value
JOB_MONTH_IMPORT = JobType.MONTH_IMPORT.value
JOB_GAP_SCAN = JobType.GAP_SCAN.value

JOB_TYPES = tuple(t.value for t in JobType)


def month_job_key(project_id: str, year: int, month: int) -> str:
    return f"{JOB_MONTH_IMPORT}:{project_id}:{year}-{month:02d}"


class JobQueue:
    """Persistent FIFO of backfill work, ordered by run_at"""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def enqueue(
        self,
        job_type: str,
        project_id: Optional[str] = None,
        params: Optional[dict] = None,
        run_at: Optional[datetime] = None,
        job_key: Optional[str] = None,
        triggered_by: str = "api",
    ) -> SyncJob:
        """
        Queue a job. When job_key is given and a pending job with the same
        key exists, that job is returned instead of a duplicate.
        """
        if job_type not in JOB_TYPES:
            raise ValueError(f"Unknown job type: {job_type}")

        db = self.session_factory()
        try:
            if job_key:
                existing = (
                    db.query(SyncJob)
                    .filter(SyncJob.job_key == job_key, SyncJob.status == TaskStatus.PENDING)
                    .first()
                )
                if existing is not None:
                    logger.info(f"[JOBS] {job_key} already queued as {existing.id}")
                    db.expunge(existing)
                    return existing

            job = SyncJob(
                job_type=job_type,
                project_id=project_id,
                job_key=job_key,
                status=TaskStatus.PENDING,
                run_at=run_at or utcnow(),
                attempts=0,
                input_params=params or {},
                triggered_by=triggered_by,
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            db.expunge(job)
            logger.info(f"[JOBS] Queued {job_type} {job.id} (key={job_key}, run_at={job.run_at})")
            return job
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def claim_due(self, now: Optional[datetime] = None, limit: int = 5) -> List[SyncJob]:
        """Mark due pending jobs as running and return them, oldest first"""
        now = now or utcnow()
        db = self.session_factory()
        try:
            jobs = (
                db.query(SyncJob)
                .filter(SyncJob.status == TaskStatus.PENDING, SyncJob.run_at <= now)
                .order_by(SyncJob.run_at.asc(), SyncJob.created_at.asc())
                .limit(limit)
                .all()
            )
            for job in jobs:
                job.status = TaskStatus.RUNNING
                job.started_at = now
                job.attempts = (job.attempts or 0) + 1
            db.commit()
            for job in jobs:
                db.refresh(job)
                db.expunge(job)
            return jobs
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def complete(self, job_id: str, output: Optional[dict] = None, message: Optional[str] = None) -> Optional[SyncJob]:
        return self._finish(job_id, TaskStatus.COMPLETED, output=output, message=message)

    def fail(self, job_id: str, error: BaseException) -> Optional[SyncJob]:
        tb = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return self._finish(job_id, TaskStatus.FAILED, error_message=str(error), error_traceback=tb)

    def cancel(self, job_id: str) -> bool:
        """Cancel a pending job; running jobs are left alone"""
        db = self.session_factory()
        try:
            job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
            if job is None or job.status != TaskStatus.PENDING:
                return False
            job.status = TaskStatus.CANCELLED
            job.completed_at = utcnow()
            db.commit()
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, job_id: str) -> Optional[SyncJob]:
        db = self.session_factory()
        try:
            job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
            if job is not None:
                db.expunge(job)
            return job
        finally:
            db.close()

    def list_for_project(self, project_id: str, limit: int = 50) -> List[SyncJob]:
        db = self.session_factory()
        try:
            jobs = (
                db.query(SyncJob)
                .filter(SyncJob.project_id == project_id)
                .order_by(SyncJob.created_at.desc())
                .limit(limit)
                .all()
            )
            for job in jobs:
                db.expunge(job)
            return jobs
        finally:
            db.close()

    def cleanup_stale_running(self, stale_minutes: int = 180) -> int:
        """Mark RUNNING jobs older than stale_minutes as FAILED (process died mid-run)"""
        cutoff = utcnow() - timedelta(minutes=stale_minutes)
        db = self.session_factory()
        try:
            stale = (
                db.query(SyncJob)
                .filter(
                    SyncJob.status == TaskStatus.RUNNING,
                    SyncJob.started_at.isnot(None),
                    SyncJob.started_at < cutoff,
                )
                .all()
            )
            for job in stale:
                job.status = TaskStatus.FAILED
                if not job.error_message:
                    job.error_message = "Auto-marked as FAILED: stale RUNNING job (server restart/timeout)"
                if not job.completed_at:
                    job.completed_at = utcnow()
            db.commit()
            if stale:
                logger.warning(f"[JOBS] Marked {len(stale)} stale running jobs as failed")
            return len(stale)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _finish(self, job_id: str, status: TaskStatus, output: Optional[dict] = None,
                message: Optional[str] = None, error_message: Optional[str] = None,
                error_traceback: Optional[str] = None) -> Optional[SyncJob]:
        db = self.session_factory()
        try:
            job = db.query(SyncJob).filter(SyncJob.id == job_id).first()
            if job is None:
                logger.warning(f"[JOBS] Job {job_id} not found")
                return None
            now = utcnow()
            job.status = status
            job.completed_at = now
            if job.started_at:
                job.duration_seconds = int((now - to_naive_utc(job.started_at)).total_seconds())
            if output is not None:
                job.output_data = output
            if message is not None:
                job.message = message
            if error_message is not None:
                job.error_message = error_message
                job.error_traceback = error_traceback
            db.commit()
            db.refresh(job)
            db.expunge(job)
            return job
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
