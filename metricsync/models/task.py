"""
Queued backfill jobs (task handles)
"""
import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Enum
import enum

from metricsync.models.base import BaseModel


class TaskStatus(str, enum.Enum):
    """Task execution status"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncJob(BaseModel):
    """
    Durable unit of background work.

    Doubles as the handle callers poll by id, and as the delayed-job row
    that carries a month chain to its next link (run_at in the future).
    """

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Task identification
    job_type = Column(String(50), nullable=False, index=True)  # full_backfill, month_import, gap_scan
    project_id = Column(String(36), nullable=True, index=True)
    job_key = Column(String(150), nullable=True, index=True)  # month_import:<project>:2025-03

    # Execution
    status = Column(Enum(TaskStatus), default=TaskStatus.PENDING, index=True)
    run_at = Column(DateTime(timezone=True), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    attempts = Column(Integer, default=0)

    # Duration (seconds)
    duration_seconds = Column(Integer, nullable=True)

    # Results
    message = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    error_traceback = Column(Text, nullable=True)

    # Additional data
    input_params = Column(JSON, nullable=True)
    output_data = Column(JSON, nullable=True)

    # Trigger info
    triggered_by = Column(String(100), nullable=True)  # scheduler, api, chain
