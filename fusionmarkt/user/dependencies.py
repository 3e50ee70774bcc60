
from typing import Any, Dict, Optional
from fastapi import Request
from fastapi.security import HTTPBearer
from fusionmarkt.auth.utils import decode_token
from fusionmarkt.common.custom_exceptions import AccessDenied, CheckoutError
from fusionmarkt.schema.full_schema import UserRole


class Authentication(HTTPBearer):
    """
    Bearer JWT check. With ``required=False`` a missing header yields None so
    guest checkout can share the route, but a present and invalid token is still rejected.
    """
    def __init__(self, required: bool = True):
        super().__init__(auto_error=False)
        self.required = required

    async def __call__(self, request:Request) -> Optional[Dict[str, Any]]:
        auth_creds=await super().__call__(request)
        if auth_creds is None:
            if self.required:
                raise CheckoutError("Yetkilendirme gerekli", status_code=401)
            return None

        decoded_token=decode_token(auth_creds.credentials, request.app.state.settings)
        if not decoded_token:
            raise CheckoutError("Yetkilendirme gerekli", status_code=401)
        return decoded_token


class AdminAuthentication(Authentication):
    async def __call__(self, request: Request) -> Optional[Dict[str, Any]]:
        claims = await super().__call__(request)
        if claims.get("role") != UserRole.ADMIN.value:
            raise AccessDenied()
        return claims


require_user = Authentication()
optional_user = Authentication(required=False)
require_admin = AdminAuthentication()
