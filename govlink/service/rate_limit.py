from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Tuple

from redis.exceptions import RedisError

from govlink.logging import get_logger
from govlink.storage.redis_cache import CacheBackend

logger = get_logger(__name__)


def rate_limited_message(window_seconds: int) -> str:
    if window_seconds % 60 == 0:
        minutes = window_seconds // 60
        wait = f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    else:
        wait = f"{window_seconds} seconds"
    return f"Too many authentication attempts from this IP, please try again after {wait}."


RATE_LIMITED_MESSAGE = rate_limited_message(15 * 60)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_seconds: int = 0
    message: Optional[str] = None
    status_code: int = 200


def client_key_from_headers(
    headers: Mapping[str, str],
    peer_host: Optional[str],
    *,
    trust_forwarded_for: bool = True,
) -> str:
    """Client identity for throttling: first forwarded hop, then X-Real-IP, then the socket peer."""
    if trust_forwarded_for:
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
        real_ip = (headers.get("x-real-ip") or "").strip()
        if real_ip:
            return real_ip
    return peer_host or "unknown"


class RateLimiter:
    """Token-bucket throttle over Redis, or a process-local bucket without it.

    Backend failures fail open: the attempt is allowed and a warning logged.
    Local buckets idle for a full window are full again and get swept.
    """

    def __init__(
        self,
        cache: CacheBackend,
        *,
        limit: int = 10,
        window_seconds: int = 15 * 60,
        message: Optional[str] = None,
    ) -> None:
        self.cache = cache
        self.limit = limit
        if window_seconds <= 0:
            logger.warning(
                "rate_limit_invalid_window",
                window_seconds=window_seconds,
                message="Invalid rate limit window_seconds; defaulting to 60 seconds",
            )
            window_seconds = 60
        self.window_seconds = window_seconds
        self.message = message or rate_limited_message(window_seconds)
        self._local_buckets: Dict[str, Tuple[float, datetime]] = {}
        self._local_lock = asyncio.Lock()
        self._last_sweep: Optional[datetime] = None

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _decision(
        self, allowed: bool, limit: int, remaining: int, reset_seconds: int
    ) -> RateLimitDecision:
        if allowed:
            return RateLimitDecision(True, limit, remaining, reset_seconds)
        return RateLimitDecision(
            False,
            limit,
            remaining,
            reset_seconds,
            message=self.message,
            status_code=429,
        )

    def _sweep_local(self, now: datetime) -> None:
        if self._last_sweep is not None and (now - self._last_sweep).total_seconds() < self.window_seconds:
            return
        self._last_sweep = now
        stale = [
            key
            for key, (_, last_ts) in self._local_buckets.items()
            if (now - last_ts).total_seconds() >= self.window_seconds
        ]
        for key in stale:
            del self._local_buckets[key]
        if stale:
            logger.debug("rate_limit_buckets_swept", removed=len(stale), remaining=len(self._local_buckets))

    async def check(
        self, client_key: str, *, cost: int = 1, limit: Optional[int] = None
    ) -> RateLimitDecision:
        """Spend ``cost`` tokens from the client's bucket.

        ``limit`` overrides the configured capacity for this key.
        """
        limit = self.limit if limit is None else limit
        if limit <= 0:
            return RateLimitDecision(True, limit, limit)
        if self.cache is not None:
            try:
                allowed, remaining, reset_seconds = await self.cache.check_rate_limit(
                    client_key,
                    limit,
                    self.window_seconds,
                    return_remaining=True,
                    cost=cost,
                )
            except (RedisError, OSError) as exc:
                logger.warning("rate_limit_backend_failed", key=client_key, error=str(exc))
                return RateLimitDecision(True, limit, limit)
            return self._decision(allowed, limit, remaining, reset_seconds)

        now = self._now()
        refill_rate = float(limit) / float(self.window_seconds)
        async with self._local_lock:
            self._sweep_local(now)
            tokens, last_ts = self._local_buckets.get(client_key, (float(limit), now))
            elapsed = max(0.0, (now - last_ts).total_seconds())
            tokens = min(float(limit), tokens + elapsed * refill_rate)
            allowed = tokens >= cost
            if allowed:
                tokens -= cost
            self._local_buckets[client_key] = (tokens, now)
            reset_seconds = int((cost - tokens) / refill_rate) + 1 if not allowed else 0
            remaining = int(tokens)
        return self._decision(allowed, limit, remaining, reset_seconds)

    def reset(self) -> None:
        self._local_buckets.clear()
        self._last_sweep = None


__all__ = [
    "RATE_LIMITED_MESSAGE",
    "RateLimitDecision",
    "RateLimiter",
    "client_key_from_headers",
    "rate_limited_message",
]
