from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession
from fusionmarkt.db.connection import async_session


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request. Work left uncommitted when the handler raises is rolled back."""
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
