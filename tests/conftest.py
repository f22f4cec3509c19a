"""
Pytest configuration and shared fixtures.
"""

from datetime import date
from typing import Callable, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from metricsync.core.database import init_db
from metricsync.models import AdsDailyMetric, Project
from metricsync.services.backfill.batching import DateRange
from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.projects import ProjectRef
from metricsync.services.backfill.sync_client import SyncResponse


class FakeSyncClient:
    """
    Scripted stand-in for SyncFunctionsClient.

    Window answers come from `script` (a callable taking the DateRange and
    the 1-based call number for that range) or default to `records` rows.
    """

    def __init__(self, records: int = 10, script: Optional[Callable[[DateRange, int], SyncResponse]] = None,
                 breakdown_failures: Optional[List[str]] = None):
        self.records = records
        self.script = script
        self.breakdown_failures = set(breakdown_failures or [])
        self.window_calls: List[dict] = []
        self.breakdown_calls: List[dict] = []
        self._per_range: Dict[DateRange, int] = {}
        self.closed = False

    def sync_window(self, project_id, ad_account_id, date_range, period_key=None) -> SyncResponse:
        self.window_calls.append({
            "project_id": project_id,
            "ad_account_id": ad_account_id,
            "date_range": date_range,
            "period_key": period_key,
        })
        n = self._per_range.get(date_range, 0) + 1
        self._per_range[date_range] = n
        if self.script is not None:
            return self.script(date_range, n)
        return SyncResponse(success=True, records=self.records)

    def sync_breakdown(self, project_id, ad_account_id, date_range, breakdown) -> SyncResponse:
        self.breakdown_calls.append({"project_id": project_id, "date_range": date_range, "breakdown": breakdown})
        if breakdown in self.breakdown_failures:
            return SyncResponse(success=False, error=f"{breakdown} unavailable")
        return SyncResponse(success=True, records=3)

    def close(self):
        self.closed = True


class RecordingSleep:
    """Replaces time.sleep; keeps every requested delay"""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def rate_limited(message: str = "User request limit reached") -> SyncResponse:
    return SyncResponse(success=False, error=message, error_code=17)


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads and sessions"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def project(session_factory) -> ProjectRef:
    """Active project with an ad account"""
    db = session_factory()
    try:
        row = Project(id="proj-1", name="Acme Ads", ad_account_id="act_123", timezone="UTC")
        db.add(row)
        db.commit()
        return ProjectRef.from_model(row)
    finally:
        db.close()


@pytest.fixture
def other_projects(session_factory):
    """An archived project and one without an ad account; both are inactive"""
    db = session_factory()
    try:
        db.add(Project(id="proj-archived", name="Old Shop", ad_account_id="act_999", archived=True))
        db.add(Project(id="proj-noacct", name="Draft", ad_account_id=None))
        db.commit()
    finally:
        db.close()


@pytest.fixture
def pacing() -> PacingConfig:
    return PacingConfig(
        batch_size_days=30,
        batch_delay_seconds=5,
        max_retries=5,
        rate_limit_base_delay_seconds=60,
        transient_retry_delay_seconds=15,
        max_transient_retries=3,
        month_cooldown_seconds=120,
        gap_fix_delay_seconds=10,
        breakdown_delay_seconds=0.5,
        min_gap_days=3,
        safe_mode_multiplier=1.5,
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_client() -> FakeSyncClient:
    return FakeSyncClient()


def seed_daily_metrics(session_factory, project_id: str, days: List[date]) -> None:
    db = session_factory()
    try:
        for day in days:
            db.add(AdsDailyMetric(project_id=project_id, date=day, breakdown="account", spend=1, impressions=10))
        db.commit()
    finally:
        db.close()
