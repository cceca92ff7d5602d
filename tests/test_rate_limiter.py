"""
Tests for the fixed-window rate limiter
"""
from unittest.mock import Mock

import pytest
import redis

from riskmate.exceptions import ApiError
from riskmate.services.rate_limiter import (
    RATE_LIMIT_CONFIGS,
    FixedWindowRateLimiter,
    RateLimitConfig,
    build_rate_limit_key,
    check_rate_limit,
    raise_if_limited,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(clock=clock)


LIMIT = RateLimitConfig(max_requests=3, window_seconds=60, key_prefix="test")


class TestMemoryLimiter:
    """In-memory fixed window"""

    def test_first_hit(self, limiter):
        result = limiter.check("k", LIMIT)

        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_at == 1060.0

    def test_refused_at_limit(self, limiter, clock):
        for _ in range(3):
            assert limiter.check("k", LIMIT).allowed

        clock.now = 1015.2
        result = limiter.check("k", LIMIT)

        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after == 45

    def test_window_resets(self, limiter, clock):
        for _ in range(4):
            limiter.check("k", LIMIT)

        clock.now = 1060.0
        result = limiter.check("k", LIMIT)

        assert result.allowed is True
        assert result.remaining == 2

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.check("a", LIMIT)

        assert limiter.check("b", LIMIT).allowed is True

    def test_cleanup_removes_expired(self, limiter, clock):
        limiter.check("a", LIMIT)
        clock.now = 2000.0
        limiter.check("b", LIMIT)

        assert limiter.cleanup() == 1
        assert len(limiter) == 1

    def test_headers(self, limiter, clock):
        for _ in range(3):
            limiter.check("k", LIMIT)
        headers = limiter.check("k", LIMIT).headers()

        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Reset"] == "1060"
        assert headers["Retry-After"] == "60"


class TestRedisLimiter:
    """INCR + EXPIRE backend"""

    def test_first_hit_sets_expiry(self, clock):
        client = Mock()
        client.incr.return_value = 1
        client.ttl.return_value = 60
        limiter = FixedWindowRateLimiter(redis_client=client, clock=clock)

        result = limiter.check("k", LIMIT)

        assert result.allowed is True
        assert result.remaining == 2
        client.expire.assert_called_once_with("ratelimit:k", 60)

    def test_over_limit(self, clock):
        client = Mock()
        client.incr.return_value = 4
        client.ttl.return_value = 12
        limiter = FixedWindowRateLimiter(redis_client=client, clock=clock)

        result = limiter.check("k", LIMIT)

        assert result.allowed is False
        assert result.retry_after == 12
        client.expire.assert_not_called()

    def test_falls_back_to_memory_on_redis_error(self, clock):
        client = Mock()
        client.incr.side_effect = redis.ConnectionError("down")
        limiter = FixedWindowRateLimiter(redis_client=client, clock=clock)

        result = limiter.check("k", LIMIT)

        assert result.allowed is True
        assert len(limiter) == 1


class TestPresets:
    """Named presets and the authenticated-caller helper"""

    def test_preset_values(self):
        assert (RATE_LIMIT_CONFIGS["export"].max_requests, RATE_LIMIT_CONFIGS["export"].window_seconds) == (10, 3600)
        assert (RATE_LIMIT_CONFIGS["pdf"].max_requests, RATE_LIMIT_CONFIGS["pdf"].window_seconds) == (20, 3600)
        assert (RATE_LIMIT_CONFIGS["bulk"].max_requests, RATE_LIMIT_CONFIGS["bulk"].window_seconds) == (60, 60)
        assert (RATE_LIMIT_CONFIGS["mutation"].max_requests, RATE_LIMIT_CONFIGS["mutation"].window_seconds) == (120, 60)

    def test_key_format(self):
        assert build_rate_limit_key("pdf", "org_1", "user_1", "/api/x") == "pdf:org_1:user_1:/api/x"

    def test_check_rate_limit_raises_after_preset(self, limiter):
        for _ in range(10):
            check_rate_limit(limiter, "export", "org_1", "user_1", "/api/proof-packs")

        with pytest.raises(ApiError) as exc_info:
            check_rate_limit(limiter, "export", "org_1", "user_1", "/api/proof-packs")

        error = exc_info.value
        assert error.status_code == 429
        assert error.retry_after_seconds == 3600
        assert error.retryable is True

    def test_raise_if_limited_passes_allowed(self, limiter):
        result = limiter.check("k", LIMIT)

        assert raise_if_limited(result) is result
