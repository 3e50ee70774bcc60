from typing import Optional
import redis.asyncio as redis


def redis_from_settings(settings) -> Optional[redis.Redis]:
    """Shared counters for the rate limiter; ``None`` when the memory backend is configured."""
    if settings.RATE_LIMIT_BACKEND != "redis":
        return None
    return redis.Redis(host=settings.REDIS_HOST, port=settings.REDIS_PORT, db=settings.REDIS_DB,
                       socket_timeout=1.0, decode_responses=False)
