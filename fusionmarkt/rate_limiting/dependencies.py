
from fastapi import Request
from fusionmarkt.common.custom_exceptions import RateLimitedError
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.rate_limiting.constants import RATE_LIMIT_PRESETS
from fusionmarkt.rate_limiting.models import RateLimitPolicy
from fusionmarkt.rate_limiting.utils import client_ip

logger = get_logger("fusionmarkt.rate_limiting")


def order_policy(settings) -> RateLimitPolicy:
    return RateLimitPolicy(limit=settings.ORDER_RATE_LIMIT, window_seconds=settings.ORDER_RATE_WINDOW)


def rate_limit_dependency(route_key: str = "order"):
    async def _dep(request: Request):
        if route_key == "order":
            policy = order_policy(request.app.state.settings)
        else:
            policy = RATE_LIMIT_PRESETS[route_key]

        ip = client_ip(request)
        result = await request.app.state.rate_limiter.check(f"{route_key}:{ip}", policy)
        request.state.rate_limit = (policy, result)
        if not result.allowed:
            logger.warning("rate_limit.exceeded", extra={"route_key": route_key, "client_ip": ip})
            raise RateLimitedError(retry_after=result.retry_after)
    return _dep
