"""
Month-by-month import cursor rows
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey, UniqueConstraint, CheckConstraint

from metricsync.models.base import BaseModel
from metricsync.models.enums import MonthImportStatus


class ProjectImportMonth(BaseModel):
    """One calendar month of a chained backfill. Never deleted."""

    __tablename__ = "project_import_months"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)

    status = Column(
        Enum(MonthImportStatus),
        default=MonthImportStatus.PENDING,
        nullable=False,
        index=True,
    )
    records_count = Column(Integer, default=0)
    retry_count = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "year", "month", name="uq_project_import_month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_project_import_month_range"),
    )

    @property
    def month_key(self) -> str:
        return f"{self.year}-{self.month:02d}"
