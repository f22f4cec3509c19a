"""
Daily ad metrics (written by the external sync primitive).

The backfill engine only reads the date presence set from this table.
"""
from sqlalchemy import Column, Integer, String, Date, JSON, Numeric, ForeignKey, UniqueConstraint

from metricsync.models.base import BaseModel


class AdsDailyMetric(BaseModel):
    """One day of metrics for a project and breakdown dimension"""

    __tablename__ = "ads_daily_metrics"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)

    # "ad:<id>", "campaign:<id>" or "account"
    breakdown = Column(String(150), nullable=False, default="account")

    spend = Column(Numeric(15, 2), default=0)
    impressions = Column(Integer, default=0)
    clicks = Column(Integer, default=0)
    reach = Column(Integer, default=0)
    conversions = Column(Integer, default=0)
    conversion_value = Column(Numeric(15, 2), default=0)

    metrics = Column(JSON, nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "date", "breakdown", name="uq_ads_daily_metrics_project_date_breakdown"),
    )
