"""
Project model (one synchronized ad account)

Created by account setup; the backfill engine only writes the
progress/status columns.
"""
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, JSON

from metricsync.models.base import BaseModel


class Project(BaseModel):
    """Advertising account being synchronized"""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # External account reference (Meta act_xxx)
    ad_account_id = Column(String(100), nullable=True, index=True)

    name = Column(String(255), nullable=False)
    timezone = Column(String(50), nullable=True)
    archived = Column(Boolean, default=False, nullable=False)

    # {status, progress, message, started_at, phase} - overwritten in place
    sync_progress = Column(JSON, nullable=True)

    # Last run status tag (success / partial / error / importing_history)
    webhook_status = Column(String(50), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
