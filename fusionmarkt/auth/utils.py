import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from fusionmarkt.config.settings import config_settings

pwd_context = CryptContext(schemes=[config_settings.PASS_HASH_SCHEME], deprecated="auto",
                           bcrypt__rounds=config_settings.BCRYPT_ROUNDS)


def hash_password(plain: str, rounds: Optional[int] = None) -> str:
    if rounds:
        return pwd_context.using(bcrypt__rounds=rounds).hash(plain)
    return pwd_context.hash(plain)


def generate_temp_password() -> str:
    # guest accounts get an unusable random password until they pick their own
    return secrets.token_urlsafe(24)


def generate_contract_access_token() -> str:
    return secrets.token_hex(32)


def tokens_match(expected: Optional[str], provided: Optional[str]) -> bool:
    """Constant time comparison; an empty side never matches."""
    return bool(expected and provided) and secrets.compare_digest(expected, provided)


def create_access_token(user_public_id, role: str, expires_dur: Optional[int] = None,
                        settings=config_settings) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_dur or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_public_id),
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + lifetime).timestamp()),
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGO)


def decode_token(token: str, settings=config_settings) -> Optional[Dict[str, Any]]:
    """Claims of a token with a valid signature and expiry, otherwise None."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGO])
    except JWTError:
        return None
