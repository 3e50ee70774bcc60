from typing import Any, Dict, Mapping, Optional
from fastapi.responses import JSONResponse
from fusionmarkt.common.context import request_id_ctx


def envelope(data: Any = None, *, code: Optional[str] = None, message: Optional[str] = None) -> Dict[str, Any]:
    """
    ``{"status", "data", "error", "request_id"}`` body used by the health check
    and by the generic (non checkout) error handlers.
    """
    error = {"code": code, "details": {"message": message}} if code else None
    return {
        "status": "error" if error else "ok",
        "data": data,
        "error": error,
        "request_id": request_id_ctx.get(),
    }


def json_response(content: Any, status_code: int = 200,
                  headers: Optional[Mapping[str, str]] = None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=dict(headers) if headers else None)
