"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- database and Redis reachability
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db
from src.api.schemas import HealthResponse
from src.infrastructure import redis_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(db: AsyncSession = Depends(get_db)):
    database = "ok"
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "unavailable"
    redis = "ok" if await redis_client.ping() else "unavailable"
    status = "ok" if database == redis == "ok" else "degraded"
    return HealthResponse(status=status, database=database, redis=redis)
