import contextvars
from dataclasses import dataclass
from typing import Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession

# set per request by RequestIdMiddleware, read by the logger and error handlers
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)


@dataclass
class CheckoutContext:
    """Per-request collaborators handed to the checkout services explicitly."""
    session: AsyncSession
    settings: Any
    user_id: Optional[int]
    client_ip: str
    notifier: Any
    gateway: Any
    user_role: Optional[str] = None
