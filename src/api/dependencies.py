"""FastAPI dependency injection helpers."""

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession

from src.infrastructure.database import async_session_factory
from src.infrastructure.gateway import GatewayClient, StripeGatewayClient


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """
    Yield an async DB session.  Services commit their own units of work;
    whatever is still pending at the end is committed, and any exception
    rolls it back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@lru_cache(maxsize=1)
def get_gateway() -> GatewayClient:
    return StripeGatewayClient()
