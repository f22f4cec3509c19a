"""
Database models for metricsync
"""
from metricsync.models.base import Base, BaseModel, TimestampMixin, utcnow, to_naive_utc
from metricsync.models.enums import RunStatus, MonthImportStatus, ProgressStatus, JobType

# Account models
from metricsync.models.project import Project

# Metrics store (external writer)
from metricsync.models.daily_metrics import AdsDailyMetric

# Backfill state
from metricsync.models.import_month import ProjectImportMonth
from metricsync.models.sync_log import SyncLog

# Task models
from metricsync.models.task import SyncJob, TaskStatus


__all__ = [
    # Base
    "Base", "BaseModel", "TimestampMixin", "utcnow", "to_naive_utc",

    # Enums
    "RunStatus", "MonthImportStatus", "ProgressStatus", "JobType", "TaskStatus",

    # Account
    "Project",

    # Metrics
    "AdsDailyMetric",

    # Backfill
    "ProjectImportMonth", "SyncLog",

    # Task
    "SyncJob",
]
