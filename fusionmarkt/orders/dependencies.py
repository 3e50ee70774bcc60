from typing import Any, Dict, Optional
from uuid import UUID
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from fusionmarkt.common.context import CheckoutContext
from fusionmarkt.common.custom_exceptions import CheckoutError
from fusionmarkt.db.dependencies import get_session
from fusionmarkt.rate_limiting.utils import client_ip
from fusionmarkt.user.dependencies import optional_user, require_admin, require_user
from fusionmarkt.user.repository import identify_user_by_pid


async def user_id_from_claims(session: AsyncSession, claims: Dict[str, Any]) -> int:
    try:
        user_pid = UUID(str(claims.get("sub")))
    except ValueError:
        raise CheckoutError("Yetkilendirme gerekli", status_code=401)

    user_id = await identify_user_by_pid(session, user_pid)
    if user_id is None:
        raise CheckoutError("Yetkilendirme gerekli", status_code=401)
    return user_id


def _context(request: Request, session: AsyncSession, user_id: Optional[int],
             claims: Optional[Dict[str, Any]]) -> CheckoutContext:
    state = request.app.state
    return CheckoutContext(
        session=session,
        settings=state.settings,
        user_id=user_id,
        client_ip=client_ip(request),
        notifier=state.notifier,
        gateway=state.gateway,
        user_role=claims.get("role") if claims else None,
    )


async def get_checkout_context(request: Request,
                               claims: Optional[Dict[str, Any]] = Depends(optional_user),
                               session: AsyncSession = Depends(get_session)) -> CheckoutContext:
    """Guest or signed-in buyer."""
    user_id = await user_id_from_claims(session, claims) if claims else None
    return _context(request, session, user_id, claims)


async def get_user_context(request: Request,
                           claims: Dict[str, Any] = Depends(require_user),
                           session: AsyncSession = Depends(get_session)) -> CheckoutContext:
    user_id = await user_id_from_claims(session, claims)
    return _context(request, session, user_id, claims)


async def get_admin_context(request: Request,
                            claims: Dict[str, Any] = Depends(require_admin),
                            session: AsyncSession = Depends(get_session)) -> CheckoutContext:
    user_id = await user_id_from_claims(session, claims)
    return _context(request, session, user_id, claims)
