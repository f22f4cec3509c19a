"""
Retry policy for calls to the external sync primitive.

Outcomes fall into four classes:

- SUCCESS: stop.
- RATE_LIMITED: upstream throttling. Linear backoff
  (rate_limit_base_delay_seconds * attempt), at most max_retries
  rate-limited attempts.
- TRANSIENT: network / timeout / 5xx. Fixed delay, separate budget of
  max_transient_retries attempts.
- PERMANENT: anything else. Never retried.

An exhausted budget is reported as a permanent failure by the caller.
"""
import enum
import re
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from metricsync.services.backfill.pacing import PacingConfig

if TYPE_CHECKING:
    from metricsync.services.backfill.sync_client import SyncResponse


# Meta Graph API throttling codes
RATE_LIMIT_ERROR_CODES = {4, 17, 32, 613, 80004}

RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate-limit",
    "too many calls",
    "too many requests",
    "request limit",
    "throttl",
)

TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection error",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
)

# Status codes quoted in a message; whole numbers only so ids like act_1429881 do not match
RATE_LIMIT_STATUS_PATTERN = re.compile(r"\b429\b")
TRANSIENT_STATUS_PATTERN = re.compile(r"\b50[234]\b")

TRANSIENT_HTTP_STATUS = {408, 500, 502, 503, 504}


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0
    exhausted: bool = False


def is_rate_limit_error(message: Optional[str], code: Optional[int] = None, status_code: Optional[int] = None) -> bool:
    if code in RATE_LIMIT_ERROR_CODES or status_code == 429:
        return True
    text = (message or "").lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS) or bool(RATE_LIMIT_STATUS_PATTERN.search(text))


def is_transient_error(message: Optional[str], status_code: Optional[int] = None) -> bool:
    if status_code in TRANSIENT_HTTP_STATUS:
        return True
    text = (message or "").lower()
    return any(marker in text for marker in TRANSIENT_MARKERS) or bool(TRANSIENT_STATUS_PATTERN.search(text))


class RetryPolicy:
    """Classifies sync outcomes and decides whether and when to retry"""

    def __init__(self, pacing: PacingConfig):
        self.pacing = pacing

    def classify(self, response: "SyncResponse") -> Outcome:
        if response.success:
            return Outcome.SUCCESS
        # Rate limiting wins over transient markers ("429" vs "5xx")
        if is_rate_limit_error(response.error, response.error_code, response.status_code):
            return Outcome.RATE_LIMITED
        if is_transient_error(response.error, response.status_code):
            return Outcome.TRANSIENT
        return Outcome.PERMANENT

    def backoff_delay(self, rate_limited_attempt: int) -> float:
        """Linear backoff: base delay times the attempt number"""
        return self.pacing.rate_limit_base_delay_seconds * rate_limited_attempt

    def decide(self, outcome: Outcome, rate_limited_attempts: int, transient_attempts: int) -> RetryDecision:
        """
        rate_limited_attempts / transient_attempts count the attempts so far
        (including the one just made) that ended in each class.
        """
        if outcome == Outcome.SUCCESS or outcome == Outcome.PERMANENT:
            return RetryDecision(retry=False)

        if outcome == Outcome.RATE_LIMITED:
            if rate_limited_attempts >= self.pacing.max_retries:
                return RetryDecision(retry=False, exhausted=True)
            return RetryDecision(retry=True, delay_seconds=self.backoff_delay(rate_limited_attempts))

        if transient_attempts >= self.pacing.max_transient_retries:
            return RetryDecision(retry=False, exhausted=True)
        return RetryDecision(retry=True, delay_seconds=self.pacing.transient_retry_delay_seconds)
