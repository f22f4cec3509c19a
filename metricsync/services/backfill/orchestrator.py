"""
Import Orchestrator - one full historical backfill run.

Batches are run strictly one after another: the upstream rate limit is
per ad account, so parallel windows only reach throttling sooner. A failed
window degrades the run to partial and the loop moves on.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from metricsync.core.config import settings
from metricsync.models import ProgressStatus, RunStatus
from metricsync.schemas.backfill import HistoricalImportLog
from metricsync.services.backfill.batching import DateRange, generate_date_batches
from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.progress import ProgressReporter
from metricsync.services.backfill.projects import ProjectRef
from metricsync.services.backfill.retry_policy import RetryPolicy
from metricsync.services.backfill.run_log import RunLog
from metricsync.services.backfill.window_executor import WindowExecutor, WindowResult

logger = logging.getLogger(__name__)

# Last 10% of the progress bar belongs to the demographic pass
BATCH_PROGRESS_SHARE = 0.9


@dataclass
class ImportRun:
    """In-memory record of one orchestrator invocation"""

    project_id: str
    since: date
    until: date
    batches: List[DateRange]
    results: List[WindowResult] = field(default_factory=list)
    total_records: int = 0
    elapsed_seconds: float = 0.0
    status: Optional[RunStatus] = None
    demographics_failed: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success_batches(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_batches(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "range": {"since": self.since.isoformat(), "until": self.until.isoformat()},
            "status": self.status.value if self.status else None,
            "total_batches": len(self.batches),
            "success_batches": self.success_batches,
            "failed_batches": self.failed_batches,
            "total_records": self.total_records,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
            "demographics_failed": self.demographics_failed,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
        }


def batch_progress(batch_index: int, total_batches: int) -> int:
    """Percent after batch_index (0-based) completes, capped at the batch share"""
    # Halves round up
    return int(100 * (batch_index + 1) / total_batches * BATCH_PROGRESS_SHARE + 0.5)


def estimate_minutes(total_batches: int, pacing: PacingConfig, seconds_per_batch: float = 30.0) -> float:
    """Rough wall-clock estimate used in the acceptance response"""
    if total_batches == 0:
        return 0.0
    delays = pacing.batch_delay_seconds * (total_batches - 1)
    return round((total_batches * seconds_per_batch + delays) / 60, 1)


class ImportOrchestrator:
    """Drives the Window Executor over every batch of one requested range"""

    def __init__(
        self,
        session_factory,
        client,
        pacing: PacingConfig,
        sleep: Callable[[float], None] = time.sleep,
        breakdowns: Optional[List[str]] = None,
    ):
        self.session_factory = session_factory
        self.client = client
        self.pacing = pacing
        self.sleep = sleep
        self.breakdowns = list(breakdowns if breakdowns is not None else settings.DEMOGRAPHIC_BREAKDOWNS)
        self.executor = WindowExecutor(client, RetryPolicy(pacing), sleep=sleep)
        self.run_log = RunLog(session_factory)

    def run(self, project: ProjectRef, since: date, until: date) -> ImportRun:
        started = time.monotonic()
        batches = generate_date_batches(since, until, self.pacing.batch_size_days)
        run = ImportRun(project_id=project.id, since=since, until=until, batches=batches)
        progress = ProgressReporter(self.session_factory, project.id)

        logger.info("========== HISTORICAL IMPORT STARTED ==========")
        logger.info(
            f"[IMPORT] Project: {project.name} | Range: {since} to {until} | "
            f"Batches: {len(batches)} x {self.pacing.batch_size_days}d | Safe mode: {self.pacing.is_safe_mode}"
        )

        try:
            progress.start(f"Starting import of {len(batches)} batches...")

            for i, batch in enumerate(batches):
                logger.info(f"[IMPORT] Batch {i + 1}/{len(batches)}: {batch}")
                result = self.executor.execute(project, batch)
                run.results.append(result)

                if result.success:
                    run.total_records += result.records_imported
                    logger.info(f"[IMPORT] Batch {i + 1}: {result.records_imported} records")
                else:
                    logger.warning(f"[IMPORT] Batch {i + 1} failed: {result.error}")

                progress.update(
                    batch_progress(i, len(batches)),
                    f"Batch {i + 1}/{len(batches)} ({batch}) - {run.total_records} records",
                )

                if i < len(batches) - 1:
                    self.sleep(self.pacing.batch_delay_seconds)

            if batches:
                progress.update(
                    int(100 * BATCH_PROGRESS_SHARE),
                    "Syncing demographic breakdowns...",
                    status=ProgressStatus.DEMOGRAPHICS,
                    phase="demographics",
                )
                run.demographics_failed = self._sync_demographics(project, DateRange(since, until))

            run.status = RunStatus.SUCCESS if run.failed_batches == 0 else RunStatus.PARTIAL
        except Exception as e:
            run.status = RunStatus.ERROR
            run.error = str(e)
            logger.error(f"[IMPORT] Run aborted for {project.name}: {e}")
            raise
        finally:
            run.elapsed_seconds = time.monotonic() - started
            self._finalize(project, run, progress)

        return run

    def _sync_demographics(self, project: ProjectRef, date_range: DateRange) -> List[str]:
        """One best-effort call per breakdown; returns the breakdowns that failed"""
        failed: List[str] = []
        for i, breakdown in enumerate(self.breakdowns):
            try:
                response = self.client.sync_breakdown(
                    project_id=project.id,
                    ad_account_id=project.ad_account_id,
                    date_range=date_range,
                    breakdown=breakdown,
                )
                if response.success:
                    logger.info(f"[DEMOGRAPHICS] {breakdown}: {response.records} records")
                else:
                    failed.append(breakdown)
                    logger.warning(f"[DEMOGRAPHICS] {breakdown} failed: {response.error}")
            except Exception as e:
                failed.append(breakdown)
                logger.warning(f"[DEMOGRAPHICS] {breakdown} failed: {e}")

            if i < len(self.breakdowns) - 1:
                self.sleep(self.pacing.breakdown_delay_seconds)
        return failed

    def _finalize(self, project: ProjectRef, run: ImportRun, progress: ProgressReporter) -> None:
        total = len(run.batches)
        if run.status == RunStatus.ERROR:
            message = f"Import failed: {run.error}"
            progress_status = ProgressStatus.ERROR
        else:
            message = f"{run.success_batches}/{total} batches imported, {run.total_records} records"
            progress_status = ProgressStatus.SUCCESS if run.status == RunStatus.SUCCESS else ProgressStatus.PARTIAL

        try:
            progress.finish(progress_status, message)
            self.run_log.append(
                project.id,
                run.status,
                HistoricalImportLog(
                    range=f"{run.since} to {run.until}",
                    total_batches=total,
                    success_batches=run.success_batches,
                    failed_batches=run.failed_batches,
                    total_records=run.total_records,
                    elapsed=f"{run.elapsed_seconds:.1f}s",
                    safe_mode=self.pacing.is_safe_mode,
                    demographics_failed=run.demographics_failed,
                    error=run.error,
                ),
            )
        except Exception as e:
            # Keep the original error when the run already failed
            if run.status != RunStatus.ERROR:
                raise
            logger.error(f"[IMPORT] Could not record failed run for {project.name}: {e}")

        logger.info("========== HISTORICAL IMPORT COMPLETE ==========")
        logger.info(
            f"[IMPORT] {project.name}: {run.status.value} | {run.success_batches}/{total} batches | "
            f"{run.total_records} records | {run.elapsed_seconds:.1f}s"
        )
