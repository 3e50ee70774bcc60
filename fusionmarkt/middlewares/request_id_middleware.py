import re
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from uuid6 import uuid7
from fusionmarkt.common.context import request_id_ctx

REQUEST_ID_HEADER = "X-Request-ID"
# inbound ids are echoed into logs and headers, so only short opaque tokens are kept
_ACCEPTED_ID = re.compile(r"^[A-Za-z0-9._:-]{8,64}$")


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(REQUEST_ID_HEADER, "")
        req_id = inbound if _ACCEPTED_ID.match(inbound) else uuid7().hex

        token = request_id_ctx.set(req_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[REQUEST_ID_HEADER] = req_id
        return response
