"""
Continuation Scheduler - month-by-month backfill chain.

Each link imports one calendar month, records the outcome on its
project_import_months row and, when asked to continue, queues the next
month as a delayed job. The chain stops after the current month.
"""
import calendar
import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, List, Optional

from metricsync.models import MonthImportStatus, ProjectImportMonth, RunStatus, SyncJob, utcnow
from metricsync.schemas.backfill import MonthImportLog
from metricsync.services.backfill.batching import generate_date_batches, iter_months, month_date_range, next_month
from metricsync.services.backfill.jobs import JOB_MONTH_IMPORT, JobQueue, month_job_key
from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.projects import load_project
from metricsync.services.backfill.retry_policy import RetryPolicy
from metricsync.services.backfill.run_log import RunLog
from metricsync.services.backfill.window_executor import WindowExecutor

logger = logging.getLogger(__name__)

MONTH_NAMES = list(calendar.month_name)


def month_label(year: int, month: int) -> str:
    return f"{MONTH_NAMES[month]} {year}"


@dataclass
class MonthResult:
    project_id: str
    year: int
    month: int
    success: bool
    records: int = 0
    batches: int = 0
    error: Optional[str] = None
    next_job_id: Optional[str] = None
    next_run_at: Optional[str] = None

    @property
    def month_key(self) -> str:
        return f"{self.year}-{self.month:02d}"

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "month": self.month_key,
            "success": self.success,
            "records": self.records,
            "batches": self.batches,
            "error": self.error,
            "next_job_id": self.next_job_id,
            "next_run_at": self.next_run_at,
        }


class ContinuationScheduler:
    """Runs one month link and hands the chain to the job queue"""

    def __init__(
        self,
        session_factory,
        client,
        pacing: PacingConfig,
        sleep: Callable[[float], None] = time.sleep,
        queue: Optional[JobQueue] = None,
    ):
        self.session_factory = session_factory
        self.client = client
        self.pacing = pacing
        self.sleep = sleep
        self.queue = queue or JobQueue(session_factory)
        self.run_log = RunLog(session_factory)

    # ============================================
    # Month link
    # ============================================

    def run_month(
        self,
        project_id: str,
        year: int,
        month: int,
        continue_chain: bool = False,
        safe_mode: bool = True,
        today: Optional[date] = None,
    ) -> MonthResult:
        if not 1 <= month <= 12:
            raise ValueError(f"month must be 1-12, got {month}")

        today = today or date.today()
        pacing = self.pacing.for_mode(safe_mode)
        project = load_project(self.session_factory, project_id)
        label = month_label(year, month)

        logger.info(f"[MONTH-IMPORT] {project.name}: {label} (continue_chain={continue_chain}, safe_mode={safe_mode})")
        self._mark_importing(project_id, year, month)

        result = MonthResult(project_id=project_id, year=year, month=month, success=True)
        executor = WindowExecutor(self.client, RetryPolicy(pacing), sleep=self.sleep)
        span = month_date_range(year, month)
        # A month link syncs the whole month in one window
        batches = generate_date_batches(span.since, span.until, max(pacing.batch_size_days, span.days))
        result.batches = len(batches)

        errors: List[str] = []
        for i, batch in enumerate(batches):
            window = executor.execute(project, batch, period_key=f"month_{year}-{month:02d}")
            if window.success:
                result.records += window.records_imported
            else:
                errors.append(window.error or "Unknown error")
            if i < len(batches) - 1:
                self.sleep(pacing.batch_delay_seconds)

        if errors:
            result.success = False
            result.error = "; ".join(errors)

        self._record_outcome(result)
        self.run_log.append(
            project_id,
            RunStatus.SUCCESS if result.success else RunStatus.ERROR,
            MonthImportLog(
                month=result.month_key,
                month_name=label,
                records=result.records,
                batches=result.batches,
                continue_chain=continue_chain,
                error=result.error,
            ),
        )

        if result.success:
            logger.info(f"[MONTH-IMPORT] {project.name}: {label} done, {result.records} records")
        else:
            logger.warning(f"[MONTH-IMPORT] {project.name}: {label} failed: {result.error}")

        if continue_chain:
            self._schedule_next(result, pacing, safe_mode, today)

        return result

    def _schedule_next(self, result: MonthResult, pacing: PacingConfig, safe_mode: bool, today: date) -> None:
        following = next_month(result.year, result.month, today)
        if following is None:
            logger.info(f"[MONTH-IMPORT] Chain complete for {result.project_id} at {result.month_key}")
            return

        cooldown = pacing.month_cooldown_seconds
        if not result.success:
            cooldown *= 2

        next_year, next_mon = following
        job = self.enqueue_month(
            result.project_id,
            next_year,
            next_mon,
            continue_chain=True,
            safe_mode=safe_mode,
            delay_seconds=cooldown,
            triggered_by="chain",
        )
        result.next_job_id = job.id
        result.next_run_at = job.run_at.isoformat() if job.run_at else None
        logger.info(f"[MONTH-IMPORT] Next link {next_year}-{next_mon:02d} in {cooldown:.0f}s (job {job.id})")

    def enqueue_month(
        self,
        project_id: str,
        year: int,
        month: int,
        continue_chain: bool = False,
        safe_mode: bool = True,
        delay_seconds: float = 0,
        triggered_by: str = "api",
    ) -> SyncJob:
        """Queue one month link; idempotent while the same month is pending"""
        return self.queue.enqueue(
            JOB_MONTH_IMPORT,
            project_id=project_id,
            params={
                "year": year,
                "month": month,
                "continue_chain": continue_chain,
                "safe_mode": safe_mode,
            },
            run_at=utcnow() + timedelta(seconds=delay_seconds),
            job_key=month_job_key(project_id, year, month),
            triggered_by=triggered_by,
        )

    # ============================================
    # Cursor rows
    # ============================================

    def _get_or_create_month(self, db, project_id: str, year: int, month: int) -> ProjectImportMonth:
        row = (
            db.query(ProjectImportMonth)
            .filter(
                ProjectImportMonth.project_id == project_id,
                ProjectImportMonth.year == year,
                ProjectImportMonth.month == month,
            )
            .first()
        )
        if row is None:
            row = ProjectImportMonth(project_id=project_id, year=year, month=month, status=MonthImportStatus.PENDING)
            db.add(row)
        return row

    def _mark_importing(self, project_id: str, year: int, month: int) -> None:
        db = self.session_factory()
        try:
            row = self._get_or_create_month(db, project_id, year, month)
            row.status = MonthImportStatus.IMPORTING
            row.started_at = utcnow()
            row.error_message = None
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_outcome(self, result: MonthResult) -> None:
        db = self.session_factory()
        try:
            row = self._get_or_create_month(db, result.project_id, result.year, result.month)
            row.completed_at = utcnow()
            if result.success:
                row.status = MonthImportStatus.SUCCESS
                row.records_count = result.records
                row.error_message = None
            else:
                row.status = MonthImportStatus.ERROR
                row.error_message = result.error
                row.retry_count = (row.retry_count or 0) + 1
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def plan_chain(self, project_id: str, start_year: int, start_month: int, today: Optional[date] = None) -> List[ProjectImportMonth]:
        """Create pending rows from the start month through the current month; existing rows are kept"""
        today = today or date.today()
        load_project(self.session_factory, project_id)

        db = self.session_factory()
        try:
            existing = {
                (row.year, row.month)
                for row in db.query(ProjectImportMonth).filter(ProjectImportMonth.project_id == project_id).all()
            }
            created: List[ProjectImportMonth] = []
            for year, month in iter_months(start_year, start_month, today):
                if (year, month) in existing:
                    continue
                row = ProjectImportMonth(project_id=project_id, year=year, month=month, status=MonthImportStatus.PENDING)
                db.add(row)
                created.append(row)
            db.commit()
            for row in created:
                db.refresh(row)
                db.expunge(row)
            logger.info(f"[MONTH-IMPORT] Planned {len(created)} months for {project_id}")
            return created
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def resume_chain(self, project_id: str, safe_mode: bool = True) -> Optional[SyncJob]:
        """Queue the first month not yet imported, continuing the chain from there"""
        pending = [row for row in self.list_months(project_id) if row.status != MonthImportStatus.SUCCESS]
        if not pending:
            logger.info(f"[MONTH-IMPORT] Nothing to resume for {project_id}")
            return None
        first = pending[0]
        return self.enqueue_month(
            project_id,
            first.year,
            first.month,
            continue_chain=True,
            safe_mode=safe_mode,
            triggered_by="resume",
        )

    def list_months(self, project_id: str) -> List[ProjectImportMonth]:
        db = self.session_factory()
        try:
            rows = (
                db.query(ProjectImportMonth)
                .filter(ProjectImportMonth.project_id == project_id)
                .order_by(ProjectImportMonth.year, ProjectImportMonth.month)
                .all()
            )
            for row in rows:
                db.expunge(row)
            return rows
        finally:
            db.close()
