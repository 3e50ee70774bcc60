from fusionmarkt.rate_limiting.models import RateLimitPolicy

RATE_LIMIT_PREFIX = "rl"    # redis key prefix
REDIS_TIMEOUT_SECONDS = 0.5
USE_IN_MEMORY_FALLBACK = True     # local counters when redis fails (not distributed)

RATE_LIMIT_PRESETS = {
    "auth": RateLimitPolicy(limit=5, window_seconds=60),
    "register": RateLimitPolicy(limit=3, window_seconds=300),
    "password_reset": RateLimitPolicy(limit=3, window_seconds=300),
    "order": RateLimitPolicy(limit=10, window_seconds=60),
    "api": RateLimitPolicy(limit=100, window_seconds=60),
    "public": RateLimitPolicy(limit=200, window_seconds=60),
}
