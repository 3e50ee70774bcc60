from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Copies the verdict left on ``request.state.rate_limit`` by the per-route
    limiter dependency onto the response, 429s included.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        verdict = getattr(request.state, "rate_limit", None)
        if verdict is not None:
            policy, result = verdict
            response.headers.update(result.headers(policy))
        return response
