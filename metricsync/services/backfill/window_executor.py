"""
Window Executor - runs the sync primitive for one date window with retries
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from metricsync.services.backfill.batching import DateRange
from metricsync.services.backfill.projects import ProjectRef
from metricsync.services.backfill.retry_policy import Outcome, RetryPolicy
from metricsync.services.backfill.sync_client import SyncResponse

logger = logging.getLogger(__name__)


@dataclass
class WindowResult:
    """Outcome of one window after the retry loop"""

    date_range: DateRange
    success: bool
    records_imported: int = 0
    attempts: int = 0
    outcome: Outcome = Outcome.SUCCESS
    error: Optional[str] = None
    exhausted: bool = False

    @property
    def retries(self) -> int:
        return max(self.attempts - 1, 0)

    def to_dict(self) -> dict:
        return {
            "since": self.date_range.since.isoformat(),
            "until": self.date_range.until.isoformat(),
            "success": self.success,
            "records": self.records_imported,
            "attempts": self.attempts,
            "error": self.error,
        }


class WindowExecutor:
    """
    Calls client.sync_window for exactly one DateRange.

    Never raises: transport errors and unexpected exceptions from the
    client come back as a failed WindowResult.
    """

    def __init__(self, client, policy: RetryPolicy, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.policy = policy
        self.sleep = sleep

    def execute(self, project: ProjectRef, date_range: DateRange, period_key: Optional[str] = None) -> WindowResult:
        attempts = 0
        rate_limited = 0
        transient = 0

        while True:
            attempts += 1
            response = self._call(project, date_range, period_key)
            outcome = self.policy.classify(response)

            if outcome == Outcome.SUCCESS:
                return WindowResult(
                    date_range=date_range,
                    success=True,
                    records_imported=response.records,
                    attempts=attempts,
                )

            if outcome == Outcome.RATE_LIMITED:
                rate_limited += 1
            elif outcome == Outcome.TRANSIENT:
                transient += 1

            decision = self.policy.decide(outcome, rate_limited, transient)
            if not decision.retry:
                if decision.exhausted:
                    logger.warning(
                        f"[WINDOW] {project.name} {date_range}: retries exhausted after "
                        f"{attempts} attempts ({outcome.value}): {response.error}"
                    )
                else:
                    logger.warning(f"[WINDOW] {project.name} {date_range}: {outcome.value} error: {response.error}")
                return WindowResult(
                    date_range=date_range,
                    success=False,
                    attempts=attempts,
                    # exhausted budgets are accounted as permanent failures
                    outcome=Outcome.PERMANENT if decision.exhausted else outcome,
                    error=response.error,
                    exhausted=decision.exhausted,
                )

            logger.info(
                f"[WINDOW] {project.name} {date_range}: {outcome.value}, "
                f"retry {attempts} in {decision.delay_seconds:.0f}s"
            )
            self.sleep(decision.delay_seconds)

    def _call(self, project: ProjectRef, date_range: DateRange, period_key: Optional[str]) -> SyncResponse:
        try:
            return self.client.sync_window(
                project_id=project.id,
                ad_account_id=project.ad_account_id,
                date_range=date_range,
                period_key=period_key,
            )
        except Exception as e:
            logger.error(f"[WINDOW] Unexpected error syncing {date_range}: {e}")
            return SyncResponse(success=False, error=str(e) or type(e).__name__)
