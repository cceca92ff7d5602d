"""
Fixed-window rate limiter
In-memory by default, Redis-backed (INCR + EXPIRE) when REDIS_URL is set
"""
import math
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis
from fastapi import Request

from ..config import config
from ..exceptions import ApiError

logger = logging.getLogger(__name__)

CLEANUP_EVERY = 100


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int
    key_prefix: str


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


RATE_LIMIT_CONFIGS: Dict[str, RateLimitConfig] = {
    "export": RateLimitConfig(10, 3600, "export"),
    "pdf": RateLimitConfig(20, 3600, "pdf"),
    "bulk": RateLimitConfig(60, 60, "bulk"),
    "mutation": RateLimitConfig(120, 60, "mutation"),
    "reconcile": RateLimitConfig(
        config.RECONCILE_RATE_LIMIT_MAX,
        config.RECONCILE_RATE_LIMIT_WINDOW_SECONDS,
        "reconcile",
    ),
}


def build_rate_limit_key(prefix: str, organization_id: str, user_id: str, path: str) -> str:
    return f"{prefix}:{organization_id}:{user_id}:{path}"


def client_ip(request: Request) -> str:
    """Client IP from proxy headers, first x-forwarded-for hop wins"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


class FixedWindowRateLimiter:
    """
    Fixed-window counter per key

    The first hit in a window creates the entry; hits beyond max_requests are
    refused until the window resets.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, clock: Callable[[], float] = time.time):
        self.redis_client = redis_client
        self.clock = clock
        self._entries: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()
        self._checks = 0

    @property
    def use_redis(self) -> bool:
        return self.redis_client is not None

    def check(self, key: str, limit_config: RateLimitConfig) -> RateLimitResult:
        if self.use_redis:
            try:
                return self._check_redis(key, limit_config)
            except redis.RedisError as e:
                logger.warning(f"Redis rate limit check failed, using memory: {e}")
        return self._check_memory(key, limit_config)

    def _check_memory(self, key: str, limit_config: RateLimitConfig) -> RateLimitResult:
        now = self.clock()
        with self._lock:
            self._checks += 1
            if self._checks % CLEANUP_EVERY == 0:
                self._cleanup_locked(now)

            entry = self._entries.get(key)
            if entry is None or now >= entry["reset_at"]:
                entry = {"count": 1, "reset_at": now + limit_config.window_seconds}
                self._entries[key] = entry
                return RateLimitResult(
                    allowed=True,
                    limit=limit_config.max_requests,
                    remaining=limit_config.max_requests - 1,
                    reset_at=entry["reset_at"],
                )

            if entry["count"] >= limit_config.max_requests:
                return RateLimitResult(
                    allowed=False,
                    limit=limit_config.max_requests,
                    remaining=0,
                    reset_at=entry["reset_at"],
                    retry_after=max(1, math.ceil(entry["reset_at"] - now)),
                )

            entry["count"] += 1
            return RateLimitResult(
                allowed=True,
                limit=limit_config.max_requests,
                remaining=limit_config.max_requests - int(entry["count"]),
                reset_at=entry["reset_at"],
            )

    def _check_redis(self, key: str, limit_config: RateLimitConfig) -> RateLimitResult:
        redis_key = f"ratelimit:{key}"
        now = self.clock()
        count = self.redis_client.incr(redis_key)
        if count == 1:
            self.redis_client.expire(redis_key, limit_config.window_seconds)
        ttl = self.redis_client.ttl(redis_key)
        if ttl is None or ttl < 0:
            # Key lost its expiry; restart the window
            self.redis_client.expire(redis_key, limit_config.window_seconds)
            ttl = limit_config.window_seconds

        reset_at = now + ttl
        if count > limit_config.max_requests:
            return RateLimitResult(
                allowed=False,
                limit=limit_config.max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, int(ttl)),
            )
        return RateLimitResult(
            allowed=True,
            limit=limit_config.max_requests,
            remaining=limit_config.max_requests - count,
            reset_at=reset_at,
        )

    def _cleanup_locked(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if now >= entry["reset_at"]]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def cleanup(self) -> int:
        """Drop expired in-memory entries"""
        with self._lock:
            return self._cleanup_locked(self.clock())

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._checks = 0

    def __len__(self) -> int:
        return len(self._entries)


def raise_if_limited(result: RateLimitResult) -> RateLimitResult:
    """
    Raises:
        ApiError: RATE_LIMIT_EXCEEDED with retry_after_seconds when refused
    """
    if not result.allowed:
        raise ApiError(
            "RATE_LIMIT_EXCEEDED",
            f"Rate limit exceeded. Try again in {result.retry_after} seconds.",
            details={"limit": result.limit, "remaining": 0, "reset_at": int(result.reset_at)},
            retry_after_seconds=result.retry_after,
        )
    return result


_rate_limiter: Optional[FixedWindowRateLimiter] = None


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Process-wide limiter, Redis-backed when available"""
    global _rate_limiter

    if _rate_limiter is None:
        from .redis_cache import get_redis_client
        _rate_limiter = FixedWindowRateLimiter(redis_client=get_redis_client())
        backend = "redis" if _rate_limiter.use_redis else "memory"
        logger.info(f"Rate limiter initialized ({backend})")

    return _rate_limiter


def check_rate_limit(
    limiter: FixedWindowRateLimiter,
    preset: str,
    organization_id: str,
    user_id: str,
    path: str,
) -> RateLimitResult:
    """
    Apply a preset to an authenticated caller

    Raises:
        ApiError: RATE_LIMIT_EXCEEDED when refused
    """
    limit_config = RATE_LIMIT_CONFIGS[preset]
    key = build_rate_limit_key(limit_config.key_prefix, organization_id, user_id, path)
    return raise_if_limited(limiter.check(key, limit_config))
