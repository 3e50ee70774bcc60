import asyncio
import math
from typing import Optional
from fusionmarkt.rate_limiting.constants import REDIS_TIMEOUT_SECONDS
from fusionmarkt.rate_limiting.models import RateLimitResult

# KEYS[1] counter key, ARGV[1] window in ms.
# The first hit of a window (or a counter that lost its TTL) sets the expiry.
# Returns {hits, ms_left}
FIXED_WINDOW_SCRIPT = """
local hits = redis.call("INCR", KEYS[1])
local ms_left = redis.call("PTTL", KEYS[1])
if hits == 1 or ms_left < 0 then
  redis.call("PEXPIRE", KEYS[1], ARGV[1])
  ms_left = tonumber(ARGV[1])
end
return {hits, ms_left}
"""


async def redis_allow(rc, key: str, limit: int, window: int, sha: Optional[str] = None) -> RateLimitResult:
    """
    One atomic INCR+PEXPIRE round trip. Redis errors propagate so the caller
    can apply its fallback policy.
    """
    pexpire_ms = int(window * 1000)
    if sha:
        call = rc.evalsha(sha, 1, key, pexpire_ms)
    else:
        call = rc.eval(FIXED_WINDOW_SCRIPT, 1, key, pexpire_ms)
    res = await asyncio.wait_for(call, timeout=REDIS_TIMEOUT_SECONDS)

    if not res or len(res) < 2:
        return RateLimitResult(allowed=True, remaining=max(0, limit - 1), reset_in=window)

    count = int(res[0])
    ttl_ms = int(res[1])
    reset_in = math.ceil(ttl_ms / 1000) if ttl_ms > 0 else window
    allowed = count <= limit
    remaining = max(0, limit - count) if allowed else 0
    return RateLimitResult(allowed=allowed, remaining=remaining, reset_in=reset_in)
