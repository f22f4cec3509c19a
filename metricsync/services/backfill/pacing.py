"""
Pacing profile for backfill work.

One immutable value is built from settings and handed to every component
at construction time. safe_mode() returns a slower copy used after
repeated throttling.
"""
from dataclasses import dataclass, replace

from metricsync.core.config import Settings, settings as default_settings


@dataclass(frozen=True)
class PacingConfig:
    batch_size_days: int = 30
    batch_delay_seconds: float = 5.0
    max_retries: int = 5
    rate_limit_base_delay_seconds: float = 60.0
    transient_retry_delay_seconds: float = 15.0
    max_transient_retries: int = 3
    month_cooldown_seconds: float = 120.0
    gap_fix_delay_seconds: float = 10.0
    breakdown_delay_seconds: float = 0.5
    min_gap_days: int = 3
    safe_mode_multiplier: float = 1.5
    is_safe_mode: bool = False

    @classmethod
    def from_settings(cls, config: Settings = None) -> "PacingConfig":
        config = config or default_settings
        return cls(
            batch_size_days=config.BATCH_SIZE_DAYS,
            batch_delay_seconds=config.BATCH_DELAY_SECONDS,
            max_retries=config.MAX_RETRIES,
            rate_limit_base_delay_seconds=config.RATE_LIMIT_BASE_DELAY_SECONDS,
            transient_retry_delay_seconds=config.TRANSIENT_RETRY_DELAY_SECONDS,
            max_transient_retries=config.MAX_TRANSIENT_RETRIES,
            month_cooldown_seconds=config.MONTH_COOLDOWN_SECONDS,
            gap_fix_delay_seconds=config.GAP_FIX_DELAY_SECONDS,
            breakdown_delay_seconds=config.BREAKDOWN_DELAY_SECONDS,
            min_gap_days=config.MIN_GAP_DAYS,
            safe_mode_multiplier=config.SAFE_MODE_MULTIPLIER,
        )

    def safe_mode(self) -> "PacingConfig":
        """
        Slower variant: inter-batch delay, rate-limit backoff base and
        month cooldown are multiplied by safe_mode_multiplier.
        Calling it on an already-safe config returns it unchanged.
        """
        if self.is_safe_mode:
            return self
        factor = self.safe_mode_multiplier
        return replace(
            self,
            batch_delay_seconds=self.batch_delay_seconds * factor,
            rate_limit_base_delay_seconds=self.rate_limit_base_delay_seconds * factor,
            month_cooldown_seconds=self.month_cooldown_seconds * factor,
            is_safe_mode=True,
        )

    def for_mode(self, safe_mode: bool) -> "PacingConfig":
        return self.safe_mode() if safe_mode else self
