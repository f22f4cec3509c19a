"""
Gap detection and healing for ads_daily_metrics.

A gap is a run of consecutive dates with no daily row. Runs shorter than
min_gap_days are accepted as days without delivery and are not reported.
"""
import logging
import time
from dataclasses import dataclass, asdict
from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional, Set

from metricsync.models import AdsDailyMetric, RunStatus
from metricsync.schemas.backfill import GapDetectionLog
from metricsync.services.backfill.batching import DateRange
from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.projects import ProjectRef, list_active_projects
from metricsync.services.backfill.retry_policy import RetryPolicy
from metricsync.services.backfill.run_log import RunLog
from metricsync.services.backfill.window_executor import WindowExecutor

logger = logging.getLogger(__name__)

DEFAULT_MIN_GAP_DAYS = 3


def _json_row(row: dict) -> dict:
    return {k: v.isoformat() if isinstance(v, date) else v for k, v in row.items()}


@dataclass(frozen=True)
class Gap:
    project_id: str
    project_name: str
    gap_start: date
    gap_end: date
    gap_days: int

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.gap_start, self.gap_end)


@dataclass
class FixResult:
    project_id: str
    project_name: str
    gap_start: date
    gap_end: date
    fixed: bool
    records_imported: int = 0
    error: Optional[str] = None


@dataclass
class GapScanReport:
    since: date
    until: date
    gaps: List[Gap]
    fix_results: List[FixResult]
    elapsed_seconds: float = 0.0

    @property
    def gaps_found(self) -> int:
        return len(self.gaps)

    @property
    def gaps_fixed(self) -> int:
        return sum(1 for r in self.fix_results if r.fixed)

    @property
    def records_imported(self) -> int:
        return sum(r.records_imported for r in self.fix_results)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
            "gaps_found": self.gaps_found,
            "gaps_fixed": self.gaps_fixed,
            "records_imported": self.records_imported,
            "gaps": [_json_row(asdict(g)) for g in self.gaps],
            "fix_results": [_json_row(asdict(r)) for r in self.fix_results],
        }


def detect_gaps(
    project_id: str,
    project_name: str,
    since: date,
    until: date,
    present_dates: Iterable[date],
    min_gap_days: int = DEFAULT_MIN_GAP_DAYS,
) -> List[Gap]:
    """
    Walk [since, until] day by day and return every maximal run of absent
    dates whose length is at least min_gap_days, including one still open
    at the end of the range.
    """
    present: Set[date] = set(present_dates)
    gaps: List[Gap] = []

    def close(start: date, end: date):
        days = (end - start).days + 1
        if days >= min_gap_days:
            gaps.append(Gap(project_id, project_name, start, end, days))

    gap_start: Optional[date] = None
    current = since
    while current <= until:
        if current not in present:
            if gap_start is None:
                gap_start = current
        elif gap_start is not None:
            close(gap_start, current - timedelta(days=1))
            gap_start = None
        current += timedelta(days=1)

    if gap_start is not None:
        close(gap_start, until)

    return gaps


class GapDetector:
    """Loads the date presence set for a project and finds its gaps"""

    def __init__(self, session_factory, min_gap_days: int = DEFAULT_MIN_GAP_DAYS):
        self.session_factory = session_factory
        self.min_gap_days = min_gap_days

    def present_dates(self, project_id: str, since: date, until: date) -> Set[date]:
        db = self.session_factory()
        try:
            rows = (
                db.query(AdsDailyMetric.date)
                .filter(
                    AdsDailyMetric.project_id == project_id,
                    AdsDailyMetric.date >= since,
                    AdsDailyMetric.date <= until,
                )
                .distinct()
                .all()
            )
            return {row[0] for row in rows}
        finally:
            db.close()

    def find_gaps(self, project: ProjectRef, since: date, until: date) -> List[Gap]:
        present = self.present_dates(project.id, since, until)
        return detect_gaps(project.id, project.name, since, until, present, self.min_gap_days)


class GapHealer:
    """Re-syncs each gap through the Window Executor"""

    def __init__(self, client, pacing: PacingConfig, sleep: Callable[[float], None] = time.sleep):
        self.pacing = pacing
        self.sleep = sleep
        self.executor = WindowExecutor(client, RetryPolicy(pacing), sleep=sleep)

    def heal(self, project: ProjectRef, gaps: List[Gap]) -> List[FixResult]:
        results: List[FixResult] = []
        for i, gap in enumerate(gaps):
            logger.info(f"[FIX] {gap.project_name}: {gap.gap_start} to {gap.gap_end} ({gap.gap_days} days)")
            result = self.executor.execute(
                project,
                gap.date_range,
                period_key=f"gap_fix_{gap.gap_start}_{gap.gap_end}",
            )

            # A successful sync with zero rows means no delivery in that span
            fix = FixResult(
                project_id=gap.project_id,
                project_name=gap.project_name,
                gap_start=gap.gap_start,
                gap_end=gap.gap_end,
                fixed=result.success,
                records_imported=result.records_imported if result.success else 0,
                error=None if result.success else (result.error or "Unknown error"),
            )
            results.append(fix)

            if fix.fixed:
                logger.info(f"[FIX] {gap.project_name}: {fix.records_imported} records imported")
            else:
                logger.warning(f"[FIX] {gap.project_name}: unhealed ({fix.error})")

            if i < len(gaps) - 1:
                self.sleep(self.pacing.gap_fix_delay_seconds)
        return results


class GapScanService:
    """Detect (and optionally heal) gaps for one project or every active one"""

    def __init__(self, session_factory, client, pacing: PacingConfig, sleep: Callable[[float], None] = time.sleep):
        self.session_factory = session_factory
        self.client = client
        self.pacing = pacing
        self.sleep = sleep
        self.detector = GapDetector(session_factory, pacing.min_gap_days)
        self.run_log = RunLog(session_factory)

    def _healer(self) -> GapHealer:
        return GapHealer(self.client, self.pacing, sleep=self.sleep)

    def scan(
        self,
        project_id: Optional[str] = None,
        since: Optional[date] = None,
        until: Optional[date] = None,
        auto_fix: bool = True,
        today: Optional[date] = None,
    ) -> GapScanReport:
        started = time.monotonic()
        today = today or date.today()
        since = since or date(today.year, 1, 1)
        until = until or today

        projects = list_active_projects(self.session_factory, project_id)
        logger.info("========== GAP DETECTION STARTED ==========")
        logger.info(f"[GAPS] Range: {since} to {until} | Projects: {len(projects)} | Auto-fix: {auto_fix}")

        report = GapScanReport(since=since, until=until, gaps=[], fix_results=[])
        healer = self._healer() if auto_fix else None

        for project in projects:
            gaps = self.detector.find_gaps(project, since, until)
            report.gaps.extend(gaps)

            if not gaps:
                logger.info(f"[GAPS] {project.name}: no gaps")
                continue

            logger.info(f"[GAPS] {project.name}: {len(gaps)} gaps found")
            fixes: List[FixResult] = []
            if healer is not None:
                fixes = healer.heal(project, gaps)
                report.fix_results.extend(fixes)

            fixed = sum(1 for f in fixes if f.fixed)
            # Detect-only scans attempt nothing, so they count as success
            status = RunStatus.SUCCESS if all(f.fixed for f in fixes) else RunStatus.PARTIAL
            self.run_log.append(
                project.id,
                status,
                GapDetectionLog(
                    range=f"{since} to {until}",
                    gaps_found=len(gaps),
                    gaps_fixed=fixed,
                    records_imported=sum(f.records_imported for f in fixes),
                ),
            )

        report.elapsed_seconds = time.monotonic() - started
        logger.info(
            f"[GAPS] Done in {report.elapsed_seconds:.1f}s | found {report.gaps_found} | "
            f"fixed {report.gaps_fixed} | records {report.records_imported}"
        )
        return report
