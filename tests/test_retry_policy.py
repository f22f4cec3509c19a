"""
Tests for outcome classification and retry decisions.
"""

import pytest

from metricsync.services.backfill.pacing import PacingConfig
from metricsync.services.backfill.retry_policy import (
    Outcome,
    RetryPolicy,
    is_rate_limit_error,
    is_transient_error,
)
from metricsync.services.backfill.sync_client import SyncResponse


@pytest.fixture
def policy(pacing) -> RetryPolicy:
    return RetryPolicy(pacing)


class TestClassification:
    """Test mapping of sync responses onto outcome classes."""

    def test_success(self, policy):
        assert policy.classify(SyncResponse(success=True, records=5)) == Outcome.SUCCESS

    @pytest.mark.parametrize("code", [4, 17, 32, 613, 80004])
    def test_rate_limit_codes(self, policy, code):
        assert policy.classify(SyncResponse(success=False, error="oops", error_code=code)) == Outcome.RATE_LIMITED

    def test_rate_limit_message(self, policy):
        response = SyncResponse(success=False, error="(#17) User request limit reached")
        assert policy.classify(response) == Outcome.RATE_LIMITED

    def test_http_429(self, policy):
        assert policy.classify(SyncResponse(success=False, error="x", status_code=429)) == Outcome.RATE_LIMITED

    def test_transient(self, policy):
        assert policy.classify(SyncResponse(success=False, error="Request timeout: read")) == Outcome.TRANSIENT
        assert policy.classify(SyncResponse(success=False, error="x", status_code=503)) == Outcome.TRANSIENT

    def test_rate_limit_wins_over_transient(self, policy):
        """A throttling code on a 5xx response is still a rate limit."""
        response = SyncResponse(success=False, error="upstream 502", error_code=17, status_code=502)
        assert policy.classify(response) == Outcome.RATE_LIMITED

    def test_permanent(self, policy):
        response = SyncResponse(success=False, error="Invalid OAuth access token", error_code=190)
        assert policy.classify(response) == Outcome.PERMANENT

    def test_id_containing_status_digits_is_permanent(self, policy):
        """Numbers inside ids are not status codes."""
        response = SyncResponse(success=False, error="Ad account act_1429881 is disabled", status_code=400)
        assert policy.classify(response) == Outcome.PERMANENT
        response = SyncResponse(success=False, error="Campaign 1203504712 was deleted", status_code=400)
        assert policy.classify(response) == Outcome.PERMANENT

    def test_status_code_quoted_in_message(self, policy):
        assert policy.classify(SyncResponse(success=False, error="HTTP 429 from upstream")) == Outcome.RATE_LIMITED
        assert policy.classify(SyncResponse(success=False, error="upstream returned 503")) == Outcome.TRANSIENT

    def test_connection_error_is_transient(self, policy):
        response = SyncResponse(success=False, error="Connection error: [Errno 111] Connection refused")
        assert policy.classify(response) == Outcome.TRANSIENT

    def test_helpers_tolerate_none(self):
        assert not is_rate_limit_error(None)
        assert not is_transient_error(None)


class TestDecisions:
    """Test retry budgets and backoff."""

    def test_linear_backoff(self, policy):
        assert [policy.backoff_delay(n) for n in (1, 2, 3, 4)] == [60, 120, 180, 240]

    def test_rate_limit_budget(self, policy):
        """Five rate-limited attempts allow four retries, then the window is exhausted."""
        decisions = [policy.decide(Outcome.RATE_LIMITED, n, 0) for n in range(1, 6)]
        assert [d.retry for d in decisions] == [True, True, True, True, False]
        assert decisions[-1].exhausted

    def test_transient_budget_is_separate(self, policy):
        decision = policy.decide(Outcome.TRANSIENT, 4, 1)
        assert decision.retry
        assert decision.delay_seconds == 15
        assert policy.decide(Outcome.TRANSIENT, 0, 3).exhausted

    def test_permanent_never_retried(self, policy):
        decision = policy.decide(Outcome.PERMANENT, 0, 0)
        assert not decision.retry
        assert not decision.exhausted

    def test_safe_mode_scales_backoff(self, pacing):
        policy = RetryPolicy(pacing.safe_mode())
        assert policy.backoff_delay(2) == 180


class TestPacingConfig:
    """Test the immutable pacing profile."""

    def test_safe_mode_scales_delays(self, pacing):
        safe = pacing.safe_mode()
        assert safe.batch_delay_seconds == 7.5
        assert safe.month_cooldown_seconds == 180
        assert safe.batch_size_days == pacing.batch_size_days
        assert safe.is_safe_mode and not pacing.is_safe_mode

    def test_safe_mode_is_idempotent(self, pacing):
        assert pacing.safe_mode().safe_mode() == pacing.safe_mode()

    def test_from_settings(self):
        config = PacingConfig.from_settings()
        assert config.batch_size_days == 30
        assert config.max_retries == 5
