from fastapi import APIRouter, Depends, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fusionmarkt.api import cur_version
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.common.responses import envelope, json_response
from fusionmarkt.db.dependencies import get_session

logger = get_logger("fusionmarkt.health")

home_router = APIRouter()


@home_router.get("/health")
async def health(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health.db_unreachable")
        return json_response(envelope({"database": "unreachable"}, code="DB_UNAVAILABLE",
                                      message="database unreachable"),
                             status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return json_response(envelope({"database": "ok", "version": cur_version}))
