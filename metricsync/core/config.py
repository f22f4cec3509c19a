"""
metricsync Configuration
Load settings from environment variables
"""
from functools import lru_cache
from typing import Optional, List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ============================================
    # Application Settings
    # ============================================
    APP_NAME: str = "metricsync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # ============================================
    # Database Settings
    # ============================================
    POSTGRES_USER: str = "postgres"
    POSTGRES_PWD: str = ""
    POSTGRES_HOST: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "metricsync"
    DATABASE_URL: Optional[str] = None

    @property
    def database_url(self) -> str:
        """Get database URL, construct from parts if not provided"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.POSTGRES_HOST:
            return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PWD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        return "sqlite:///./metricsync.db"

    # ============================================
    # CORS Settings
    # ============================================
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # ============================================
    # External Sync Functions (single-window primitive)
    # ============================================
    SYNC_FUNCTIONS_URL: Optional[str] = None  # e.g. https://<project>.supabase.co/functions/v1
    SYNC_SERVICE_KEY: Optional[str] = None
    SYNC_HTTP_TIMEOUT_SECONDS: float = 300.0
    DEMOGRAPHIC_BREAKDOWNS: List[str] = ["gender", "age", "device_platform", "publisher_platform"]

    # ============================================
    # Backfill Pacing
    # ============================================
    BATCH_SIZE_DAYS: int = 30
    BATCH_DELAY_SECONDS: float = 5.0
    MAX_RETRIES: int = 5
    RATE_LIMIT_BASE_DELAY_SECONDS: float = 60.0
    TRANSIENT_RETRY_DELAY_SECONDS: float = 15.0
    MAX_TRANSIENT_RETRIES: int = 3
    MONTH_COOLDOWN_SECONDS: float = 120.0
    GAP_FIX_DELAY_SECONDS: float = 10.0
    BREAKDOWN_DELAY_SECONDS: float = 0.5
    MIN_GAP_DAYS: int = 3
    SAFE_MODE_MULTIPLIER: float = 1.5

    # ============================================
    # Scheduler Settings
    # ============================================
    SCHEDULER_ENABLED: bool = True
    JOB_POLL_INTERVAL_SECONDS: int = 15
    JOB_BATCH_LIMIT: int = 5
    STALE_JOB_MINUTES: int = 180
    GAP_SCAN_ENABLED: bool = True
    GAP_SCAN_CRON_HOUR: int = 4
    GAP_SCAN_CRON_MINUTE: int = 30

    @property
    def sync_configured(self) -> bool:
        """True when the external sync endpoint and its key are both set"""
        return bool(self.SYNC_FUNCTIONS_URL and self.SYNC_SERVICE_KEY)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Global settings instance
settings = get_settings()
