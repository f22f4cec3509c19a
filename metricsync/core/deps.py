"""
Dependency injection for FastAPI
"""
from typing import Generator

from fastapi import Depends

from metricsync.core.database import SessionLocal


def get_db() -> Generator:
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    """Session factory used by backfill services (overridable in tests)"""
    return SessionLocal


def get_backfill_service(session_factory=Depends(get_session_factory)):
    """Backfill facade bound to the request's session factory"""
    from metricsync.services.backfill.runner import BackfillService
    return BackfillService(session_factory)
