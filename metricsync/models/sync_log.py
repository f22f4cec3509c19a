"""
Append-only run log
"""
from sqlalchemy import Column, Integer, String, Text, ForeignKey

from metricsync.models.base import BaseModel


class SyncLog(BaseModel):
    """Audit record of one run's outcome. message holds a JSON payload."""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    message = Column(Text, nullable=True)
