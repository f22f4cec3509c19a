"""
Enums for database models
"""
import enum


class RunStatus(str, enum.Enum):
    """Terminal status of an import run / run log entry"""
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class MonthImportStatus(str, enum.Enum):
    """Status of one calendar month in a chained backfill"""
    PENDING = "pending"
    IMPORTING = "importing"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ProgressStatus(str, enum.Enum):
    """Status tag stored in a project's sync_progress document"""
    IMPORTING = "importing"
    DEMOGRAPHICS = "demographics"
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class JobType(str, enum.Enum):
    """Kinds of queued backfill work"""
    FULL_BACKFILL = "full_backfill"
    MONTH_IMPORT = "month_import"
    GAP_SCAN = "gap_scan"
