"""Tests for RateLimiter - login attempt throttling."""

import pytest

from auth.rate_limiter import RateLimiter
from auth.exceptions import RateLimitedError


@pytest.fixture
def rate_limiter(valkey, config):
    """RateLimiter over the in-memory Valkey stand-in."""
    return RateLimiter(valkey, config)


class TestCheckRateLimit:
    """Test rate limit checking and incrementing."""

    def test_first_attempt_passes(self, rate_limiter):
        """First attempt does not raise."""
        rate_limiter.check_rate_limit("user@example.com")

    def test_within_limit_passes(self, rate_limiter, config):
        """Attempts within limit pass."""
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("allowed@example.com")

    def test_exceeds_limit_raises(self, rate_limiter, config):
        """Exceeding limit raises RateLimitedError."""
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("blocked@example.com")

        with pytest.raises(RateLimitedError):
            rate_limiter.check_rate_limit("blocked@example.com")

    def test_error_includes_retry_after(self, rate_limiter, config, valkey):
        """RateLimitedError carries the key's remaining TTL."""
        valkey.ttl.return_value = 120
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("retry@example.com")

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("retry@example.com")

        assert exc_info.value.retry_after_seconds == 120

    def test_retry_after_never_below_one(self, rate_limiter, config, valkey):
        """A key with no TTL (-1) still yields a positive Retry-After."""
        valkey.ttl.return_value = -1
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("nottl@example.com")

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("nottl@example.com")

        assert exc_info.value.retry_after_seconds == 1

    def test_different_emails_tracked_separately(self, rate_limiter, config):
        """Each email has its own counter."""
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("user1@example.com")

        rate_limiter.check_rate_limit("user2@example.com")

    def test_emails_normalized_lowercase(self, rate_limiter, config):
        """Email lookups are case-insensitive."""
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("CASE@example.com")

        with pytest.raises(RateLimitedError):
            rate_limiter.check_rate_limit(" case@EXAMPLE.com ")

    def test_key_prefix(self, rate_limiter, valkey):
        rate_limiter.check_rate_limit("prefix@example.com")
        assert "ratelimit:login:prefix@example.com" in valkey.counters


class TestSlidingWindow:
    """Test sliding window TTL behavior."""

    def test_every_attempt_resets_expiry(self, rate_limiter, config, valkey):
        """Each attempt re-arms the full window - hammering extends lockout."""
        email = "hammer@example.com"
        attempts = config.rate_limit_attempts + 3

        for _ in range(attempts):
            try:
                rate_limiter.check_rate_limit(email)
            except RateLimitedError:
                pass

        assert valkey.expire.call_count == attempts
        valkey.expire.assert_called_with(
            f"ratelimit:login:{email}", config.rate_limit_window_minutes * 60
        )


class TestResetRateLimit:
    """Test rate limit reset."""

    def test_reset_allows_new_attempts(self, rate_limiter, config):
        """Reset clears counter, allowing new attempts."""
        for _ in range(config.rate_limit_attempts):
            rate_limiter.check_rate_limit("reset@example.com")

        rate_limiter.reset_rate_limit("reset@example.com")

        rate_limiter.check_rate_limit("reset@example.com")

    def test_reset_nonexistent_does_not_error(self, rate_limiter):
        """Resetting an email with no history doesn't raise."""
        rate_limiter.reset_rate_limit("never@example.com")


class TestGetRemainingAttempts:
    """Test remaining attempts query."""

    def test_returns_max_when_no_attempts(self, rate_limiter, config):
        """Returns max attempts when email has no history."""
        remaining = rate_limiter.get_remaining_attempts("fresh@example.com")
        assert remaining == config.rate_limit_attempts

    def test_decrements_with_attempts(self, rate_limiter, config):
        """Returns correct count after attempts."""
        rate_limiter.check_rate_limit("counting@example.com")
        rate_limiter.check_rate_limit("counting@example.com")

        remaining = rate_limiter.get_remaining_attempts("counting@example.com")
        assert remaining == config.rate_limit_attempts - 2

    def test_returns_zero_when_exhausted(self, rate_limiter, config):
        """Returns 0 when all attempts used."""
        for _ in range(config.rate_limit_attempts + 2):
            try:
                rate_limiter.check_rate_limit("exhausted@example.com")
            except RateLimitedError:
                pass

        remaining = rate_limiter.get_remaining_attempts("exhausted@example.com")
        assert remaining == 0
