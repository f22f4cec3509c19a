"""
Database connection and session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from metricsync.core.config import settings


def _connect_args(url: str) -> dict:
    # SQLite connections are shared with the scheduler thread
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=settings.DEBUG,
    connect_args=_connect_args(settings.database_url),
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def init_db(bind=None) -> None:
    """Create all tables (local/dev runs; production uses migrations)"""
    # Import models so they register on Base.metadata
    import metricsync.models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

