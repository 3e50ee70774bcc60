
import asyncio
import time
from typing import Callable, Optional
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.rate_limiting.constants import RATE_LIMIT_PREFIX, USE_IN_MEMORY_FALLBACK
from fusionmarkt.rate_limiting.models import RateLimitPolicy, RateLimitResult
from fusionmarkt.rate_limiting.rate_limit_fixed_window import FIXED_WINDOW_SCRIPT, redis_allow
from fusionmarkt.rate_limiting.utils import InMemoryCounters

logger = get_logger("fusionmarkt.rate_limiting")


class RateLimiter:
    """
    Fixed-window limiter. Redis when a client is given, otherwise in-process counters.

    Failure policy: a redis error falls back to local counters; if those fail too
    the request is allowed (``fail_open=True``) or denied, never raised.
    """
    def __init__(self, redis=None, fail_open: bool = True, clock: Callable[[], float] = time.monotonic):
        self.redis = redis
        self.fail_open = fail_open
        self.memory = InMemoryCounters(clock=clock)
        self._script_sha: Optional[str] = None
        self._script_lock = asyncio.Lock()

    async def _ensure_lua_loaded(self) -> Optional[str]:
        if self._script_sha:
            return self._script_sha
        async with self._script_lock:
            if self._script_sha:
                return self._script_sha
            try:
                self._script_sha = await self.redis.script_load(FIXED_WINDOW_SCRIPT)
            except Exception:
                # EVAL (slower) on each call instead
                self._script_sha = None
            return self._script_sha

    async def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        full_key = f"{RATE_LIMIT_PREFIX}:{key}"
        if self.redis is not None:
            try:
                sha = await self._ensure_lua_loaded()
                return await redis_allow(self.redis, full_key, policy.limit, policy.window_seconds, sha=sha)
            except Exception as e:
                logger.warning("rate_limit.redis_failed", extra={"key": key, "error": str(e)})
                if not USE_IN_MEMORY_FALLBACK:
                    return self._policy_result(policy)

        try:
            return await self.memory.allow(full_key, policy.limit, policy.window_seconds)
        except Exception:
            logger.exception("rate_limit.fallback_failed", extra={"key": key})
            return self._policy_result(policy)

    def _policy_result(self, policy: RateLimitPolicy) -> RateLimitResult:
        if self.fail_open:
            return RateLimitResult(allowed=True, remaining=max(0, policy.limit - 1), reset_in=policy.window_seconds)
        return RateLimitResult(allowed=False, remaining=0, reset_in=policy.window_seconds)
