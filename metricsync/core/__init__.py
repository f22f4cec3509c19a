# Core module - config, database
from metricsync.core.config import settings
from metricsync.core.database import Base, SessionLocal, init_db
