
import asyncio
import math
import time
from typing import Callable, Dict
from fastapi import Request
from fusionmarkt.rate_limiting.models import RateLimitResult


def client_ip(request: Request) -> str:
    """Client address as seen behind Cloudflare or a reverse proxy."""
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    xff = request.headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client and request.client.host else "unknown"


class InMemoryCounters:
    """
    Per-process fixed-window counters. Used as the primary backend for a single
    instance and as the fallback while redis is unreachable.
    """
    def __init__(self, clock: Callable[[], float] = time.monotonic, max_keys: int = 10_000):
        self._clock = clock
        self.max_keys = max_keys
        self._counters: Dict[str, Dict[str, float]] = {}
        self._lock = asyncio.Lock()

    async def allow(self, key: str, limit: int, window: int) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            if len(self._counters) >= self.max_keys:
                self._purge_expired(now)
            existing = self._counters.get(key)
            if not existing or existing["expires_at"] <= now:
                self._counters[key] = {"count": 1, "expires_at": now + window}
                return RateLimitResult(allowed=True, remaining=max(0, limit - 1), reset_in=window)

            reset_in = max(1, math.ceil(existing["expires_at"] - now))
            if existing["count"] >= limit:
                return RateLimitResult(allowed=False, remaining=0, reset_in=reset_in)
            existing["count"] += 1
            return RateLimitResult(allowed=True, remaining=max(0, limit - int(existing["count"])), reset_in=reset_in)

    def _purge_expired(self, now: float) -> None:
        stale = [k for k, v in self._counters.items() if v["expires_at"] <= now]
        for k in stale:
            del self._counters[k]
