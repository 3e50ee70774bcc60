
import asyncio
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from fusionmarkt.auth.utils import generate_temp_password, hash_password
from fusionmarkt.common.custom_exceptions import EmailRegisteredError
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.common.utils import now
from fusionmarkt.schema.full_schema import UserRole, Users

logger = get_logger("fusionmarkt.user")


@dataclass
class GuestResolution:
    user_id: Optional[int] = None
    conflict: bool = False
    user_name: Optional[str] = None
    created: bool = False


async def identify_user_by_pid(session,user_pid):
    stmt=select(Users.id).where(Users.public_id==user_pid)
    res=await session.execute(stmt)
    return res.scalar_one_or_none()


async def user_by_email(session, email: str) -> Optional[Users]:
    res = await session.execute(select(Users).where(Users.email == email))
    return res.scalar_one_or_none()


async def resolve_guest_account(session, email: str, first_name: str, last_name: Optional[str],
                                phone: Optional[str], bcrypt_rounds: Optional[int] = None) -> GuestResolution:
    """
    Provision a CUSTOMER account for an unauthenticated checkout.

    An email that already belongs to a user is reported as a conflict and nothing
    is written. The lookup only produces a friendlier message; the unique constraint
    on users.email is what actually guards concurrent checkouts, see ``flush_guest_user``.
    """
    existing = await user_by_email(session, email)
    if existing:
        logger.info("guest.email.registered", extra={"email": email})
        return GuestResolution(user_id=existing.id, conflict=True, user_name=existing.name)

    # slow hash off the event loop
    password_hash = await asyncio.to_thread(hash_password, generate_temp_password(), bcrypt_rounds)
    user = Users(
        email=email,
        name=f"{first_name} {last_name or ''}".strip(),
        phone=phone,
        password_hash=password_hash,
        role=UserRole.CUSTOMER.value,
        is_guest=True,
    )
    user_id = await flush_guest_user(session, user)
    logger.info("guest.user.created", extra={"user_id": user_id})
    return GuestResolution(user_id=user_id, created=True, user_name=user.name)


async def flush_guest_user(session, user: Users) -> int:
    session.add(user)
    try:
        await session.flush()
    except IntegrityError:
        # another checkout registered this email between our lookup and insert
        await session.rollback()
        logger.warning("guest.user.insert_conflict", extra={"email": user.email})
        raise EmailRegisteredError()
    return user.id


async def set_guest_password(session, user_id: int, plain_password: str, bcrypt_rounds: Optional[int] = None) -> bool:
    """Set the first real password of a guest account. Returns False if the account is not a guest one anymore."""
    password_hash = await asyncio.to_thread(hash_password, plain_password, bcrypt_rounds)
    stmt = (
        update(Users)
        .where(Users.id == user_id, Users.is_guest.is_(True))
        .values(password_hash=password_hash, is_guest=False, updated_at=now())
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
