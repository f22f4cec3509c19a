"""
Backfill engine: paced historical import, month chains and gap healing
"""
from metricsync.services.backfill.batching import DateRange, generate_date_batches, month_date_range, next_month
from metricsync.services.backfill.continuation import ContinuationScheduler
from metricsync.services.backfill.errors import BackfillError, ConfigurationError, ProjectNotFoundError
from metricsync.services.backfill.gaps import Gap, FixResult, GapDetector, GapHealer, GapScanService, detect_gaps
from metricsync.services.backfill.jobs import JobQueue
from metricsync.services.backfill.orchestrator import ImportOrchestrator
from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.retry_policy import RetryPolicy
from metricsync.services.backfill.runner import BackfillService, JobRunner
from metricsync.services.backfill.sync_client import SyncFunctionsClient
from metricsync.services.backfill.window_executor import WindowExecutor

__all__ = [
    "DateRange", "generate_date_batches", "month_date_range", "next_month",
    "ContinuationScheduler",
    "BackfillError", "ConfigurationError", "ProjectNotFoundError",
    "Gap", "FixResult", "GapDetector", "GapHealer", "GapScanService", "detect_gaps",
    "JobQueue", "JobRunner", "BackfillService",
    "ImportOrchestrator",
    "PacingConfig",
    "RetryPolicy",
    "SyncFunctionsClient",
    "WindowExecutor",
]
