"""
Backfill API endpoints

Write routes validate and queue; the scheduler's job drain does the work.
Callers follow a run through the job handle, the project's progress
document and its run log.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from metricsync.core.deps import get_backfill_service
from metricsync.models import RunStatus
from metricsync.schemas.backfill import (
    FixResultResponse,
    GapResponse,
    GapScanRequest,
    GapScanResponse,
    HistoricalImportRequest,
    HistoricalImportResponse,
    JobResponse,
    MonthImportRequest,
    MonthImportResponse,
    MonthStatusResponse,
    PlanChainRequest,
    ResumeChainRequest,
    SyncLogResponse,
    SyncProgressPayload,
    parse_run_log_payload,
)
from metricsync.schemas.common import DataResponse, ListResponse
from metricsync.services.backfill.errors import ConfigurationError, ProjectNotFoundError
from metricsync.services.backfill.runner import BackfillService


router = APIRouter(prefix="/backfill", tags=["Backfill"])


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, ProjectNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _month_response(row) -> MonthStatusResponse:
    return MonthStatusResponse(
        year=row.year,
        month=row.month,
        status=row.status.value if hasattr(row.status, "value") else row.status,
        records_count=row.records_count or 0,
        retry_count=row.retry_count or 0,
        error_message=row.error_message,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


# ============================================
# Imports
# ============================================

@router.post("/historical", response_model=HistoricalImportResponse)
def start_historical_import(
    request: HistoricalImportRequest,
    service: BackfillService = Depends(get_backfill_service),
):
    """Queue a full historical backfill for one project."""
    try:
        result = service.start_historical_import(
            request.project_id,
            since=request.since,
            until=request.until,
            safe_mode=request.safe_mode,
        )
    except (ConfigurationError, ProjectNotFoundError) as e:
        raise _http_error(e)
    return HistoricalImportResponse(**result)


@router.post("/months", response_model=MonthImportResponse)
def start_month_import(
    request: MonthImportRequest,
    service: BackfillService = Depends(get_backfill_service),
):
    """Queue one month link, optionally continuing through the current month."""
    if not 1 <= request.month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")

    try:
        job = service.start_month_import(
            request.project_id,
            request.year,
            request.month,
            continue_chain=request.continue_chain,
            safe_mode=request.safe_mode,
        )
    except (ConfigurationError, ProjectNotFoundError) as e:
        raise _http_error(e)

    return MonthImportResponse(
        message="Month import queued",
        month=f"{request.year}-{request.month:02d}",
        continue_chain=request.continue_chain,
        safe_mode=request.safe_mode,
        job_id=job.id,
    )


@router.post("/months/plan", response_model=ListResponse[MonthStatusResponse])
def plan_month_chain(
    request: PlanChainRequest,
    service: BackfillService = Depends(get_backfill_service),
):
    """Create pending month rows from the start month through the current month."""
    if not 1 <= request.start_month <= 12:
        raise HTTPException(status_code=400, detail="start_month must be between 1 and 12")

    try:
        rows = service.plan_chain(request.project_id, request.start_year, request.start_month)
    except (ConfigurationError, ProjectNotFoundError) as e:
        raise _http_error(e)

    data = [_month_response(row) for row in rows]
    return ListResponse(
        message=f"{len(data)} months planned",
        data=data,
        total=len(data),
        page=1,
        page_size=len(data) or 1,
        pages=1,
    )


@router.post("/months/resume", response_model=DataResponse[JobResponse])
def resume_month_chain(
    request: ResumeChainRequest,
    service: BackfillService = Depends(get_backfill_service),
):
    """Queue the first month that has not been imported yet."""
    try:
        job = service.resume_chain(request.project_id, safe_mode=request.safe_mode)
    except (ConfigurationError, ProjectNotFoundError) as e:
        raise _http_error(e)

    if job is None:
        return DataResponse(message="Nothing to resume", data=None)
    return DataResponse(message="Chain resumed", data=JobResponse.model_validate(job))


# ============================================
# Gaps
# ============================================

@router.post("/gaps", response_model=GapScanResponse)
def scan_gaps(
    request: GapScanRequest,
    service: BackfillService = Depends(get_backfill_service),
):
    """Detect (and by default heal) missing date ranges. Runs synchronously."""
    if request.since and request.until and request.since > request.until:
        raise HTTPException(status_code=400, detail="since must not be after until")

    try:
        report = service.scan_gaps(
            project_id=request.project_id,
            since=request.since,
            until=request.until,
            auto_fix=request.auto_fix,
        )
    except ConfigurationError as e:
        raise _http_error(e)

    return GapScanResponse(
        elapsed_seconds=round(report.elapsed_seconds, 1),
        gaps_found=report.gaps_found,
        gaps_fixed=report.gaps_fixed,
        records_imported=report.records_imported,
        gaps=[GapResponse(**vars(g)) for g in report.gaps],
        fix_results=[FixResultResponse(**vars(r)) for r in report.fix_results],
    )


# ============================================
# Status
# ============================================

@router.get("/projects/{project_id}/months", response_model=ListResponse[MonthStatusResponse])
def list_project_months(
    project_id: str,
    service: BackfillService = Depends(get_backfill_service),
):
    """Month chain cursor for a project."""
    try:
        rows = service.list_months(project_id)
    except ProjectNotFoundError as e:
        raise _http_error(e)

    data = [_month_response(row) for row in rows]
    return ListResponse(data=data, total=len(data), page=1, page_size=len(data) or 1, pages=1)


@router.get("/projects/{project_id}/progress", response_model=DataResponse[SyncProgressPayload])
def get_project_progress(
    project_id: str,
    service: BackfillService = Depends(get_backfill_service),
):
    """Current progress document (null before the first run)."""
    try:
        progress = service.get_progress(project_id)
    except ProjectNotFoundError as e:
        raise _http_error(e)
    return DataResponse(data=progress)


@router.get("/projects/{project_id}/logs", response_model=ListResponse[SyncLogResponse])
def list_project_logs(
    project_id: str,
    limit: int = Query(50, ge=1, le=200),
    status: Optional[RunStatus] = None,
    service: BackfillService = Depends(get_backfill_service),
):
    """Run log entries, newest first."""
    try:
        entries = service.recent_logs(project_id, limit=limit, status=status)
    except ProjectNotFoundError as e:
        raise _http_error(e)

    data = []
    for entry in entries:
        item = SyncLogResponse.model_validate(entry)
        payload = parse_run_log_payload(entry.message)
        item.payload = payload.model_dump(mode="json") if payload else None
        data.append(item)

    return ListResponse(data=data, total=len(data), page=1, page_size=limit, pages=1)


@router.get("/projects/{project_id}/jobs", response_model=ListResponse[JobResponse])
def list_project_jobs(
    project_id: str,
    limit: int = Query(50, ge=1, le=200),
    service: BackfillService = Depends(get_backfill_service),
):
    """Queued and finished jobs for a project, newest first."""
    try:
        jobs = service.list_jobs(project_id, limit=limit)
    except ProjectNotFoundError as e:
        raise _http_error(e)

    data = [JobResponse.model_validate(job) for job in jobs]
    return ListResponse(data=data, total=len(data), page=1, page_size=limit, pages=1)


@router.get("/jobs/{job_id}", response_model=DataResponse[JobResponse])
def get_job(
    job_id: str,
    service: BackfillService = Depends(get_backfill_service),
):
    """Poll a job handle."""
    job = service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return DataResponse(data=JobResponse.model_validate(job))


@router.post("/jobs/{job_id}/cancel", response_model=DataResponse[JobResponse])
def cancel_job(
    job_id: str,
    service: BackfillService = Depends(get_backfill_service),
):
    """Cancel a pending job. A cancelled chain link stops the chain at its cursor."""
    job = service.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if not service.cancel_job(job_id):
        raise HTTPException(status_code=400, detail=f"Job is {job.status.value}, only pending jobs can be cancelled")
    return DataResponse(message="Job cancelled", data=JobResponse.model_validate(service.get_job(job_id)))
