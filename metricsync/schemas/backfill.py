"""
Schemas for backfill runs, progress documents and run log payloads
"""
import json
from datetime import date, datetime
from typing import Annotated, Optional, List, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from metricsync.models.enums import ProgressStatus
from metricsync.models.task import TaskStatus


# ============================================
# Persisted progress (projects.sync_progress)
# ============================================

class SyncProgressPayload(BaseModel):
    """Snapshot shown to dashboards while an import runs"""

    status: ProgressStatus
    progress: int = Field(0, ge=0, le=100)
    message: str = ""
    started_at: Optional[datetime] = None
    phase: Optional[str] = None  # batches, demographics, done


# ============================================
# Run log payloads (sync_logs.message)
# ============================================

class HistoricalImportLog(BaseModel):
    type: Literal["historical_import"] = "historical_import"
    range: str
    total_batches: int
    success_batches: int
    failed_batches: int
    total_records: int
    elapsed: str
    safe_mode: bool = False
    demographics_failed: List[str] = []
    error: Optional[str] = None


class MonthImportLog(BaseModel):
    type: Literal["month_import"] = "month_import"
    month: str
    month_name: str
    records: int = 0
    batches: int = 0
    continue_chain: bool = False
    error: Optional[str] = None


class GapDetectionLog(BaseModel):
    type: Literal["gap_detection"] = "gap_detection"
    range: str
    gaps_found: int
    gaps_fixed: int
    records_imported: int


RunLogPayload = Annotated[
    Union[HistoricalImportLog, MonthImportLog, GapDetectionLog],
    Field(discriminator="type"),
]

_run_log_adapter = TypeAdapter(RunLogPayload)


def parse_run_log_payload(message: Optional[str]):
    """Parse a stored sync_logs.message back into its payload model (None if not one)"""
    if not message:
        return None
    try:
        return _run_log_adapter.validate_python(json.loads(message))
    except ValueError:
        return None


# ============================================
# API: requests
# ============================================

class HistoricalImportRequest(BaseModel):
    """Run-the-full-backfill request"""

    project_id: str
    since: Optional[date] = None
    until: Optional[date] = None
    safe_mode: bool = False


class MonthImportRequest(BaseModel):
    """Chained month-unit request; month range is checked by the route (400)"""

    project_id: str
    year: int
    month: int
    continue_chain: bool = False
    safe_mode: bool = True


class PlanChainRequest(BaseModel):
    project_id: str
    start_year: int
    start_month: int


class ResumeChainRequest(BaseModel):
    project_id: str
    safe_mode: bool = True


class GapScanRequest(BaseModel):
    project_id: Optional[str] = None
    since: Optional[date] = None
    until: Optional[date] = None
    auto_fix: bool = True


# ============================================
# API: responses
# ============================================

class DateRangeResponse(BaseModel):
    since: date
    until: date


class HistoricalImportResponse(BaseModel):
    success: bool = True
    message: str
    project_id: str
    project_name: str
    range: DateRangeResponse
    total_batches: int
    estimated_minutes: float
    job_id: str


class MonthImportResponse(BaseModel):
    success: bool = True
    message: str
    month: str
    continue_chain: bool
    safe_mode: bool
    job_id: str


class GapResponse(BaseModel):
    project_id: str
    project_name: str
    gap_start: date
    gap_end: date
    gap_days: int


class FixResultResponse(BaseModel):
    project_id: str
    project_name: str
    gap_start: date
    gap_end: date
    fixed: bool
    records_imported: int = 0
    error: Optional[str] = None


class GapScanResponse(BaseModel):
    success: bool = True
    elapsed_seconds: float = 0.0
    gaps_found: int = 0
    gaps_fixed: int = 0
    records_imported: int = 0
    gaps: List[GapResponse] = []
    fix_results: List[FixResultResponse] = []


class JobResponse(BaseModel):
    """Task handle polled by callers"""

    id: str
    job_type: str
    project_id: Optional[str] = None
    job_key: Optional[str] = None
    status: TaskStatus
    run_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    attempts: int = 0
    message: Optional[str] = None
    error_message: Optional[str] = None
    input_params: Optional[dict] = None
    output_data: Optional[dict] = None
    triggered_by: Optional[str] = None

    class Config:
        from_attributes = True


class MonthStatusResponse(BaseModel):
    year: int
    month: int
    status: str
    records_count: int = 0
    retry_count: int = 0
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SyncLogResponse(BaseModel):
    id: int
    project_id: str
    status: str
    message: Optional[str] = None
    payload: Optional[dict] = None  # parsed message, when it is a known run log payload
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
