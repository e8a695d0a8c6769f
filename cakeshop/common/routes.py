from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from cakeshop.common.custom_exceptions import DatabaseUnavailable
from cakeshop.common.logging_setup import get_logger
from cakeshop.common.utils import success_response
from cakeshop.db.dependencies import get_session

logger = get_logger("cakeshop.common")

home_router = APIRouter()


@home_router.get("/health")
async def health_check(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(select(1))
    except SQLAlchemyError:
        logger.exception("health.db_unreachable")
        raise DatabaseUnavailable("Database connection error")

    return success_response({"status": "healthy"}, 200)
