from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

# Set once by the application lifespan; used by work that has no request
_global_session_factory: Optional[sessionmaker] = None


def set_global_session_factory(factory: sessionmaker) -> None:
    global _global_session_factory
    _global_session_factory = factory
    logger.info("Global SQLAlchemy session factory has been set.")


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Per-request session built from the factory stored on `app.state`."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        except Exception:
            # leave nothing half-written behind a failed handler
            await session.rollback()
            raise


@asynccontextmanager
async def background_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session for work that runs outside an HTTP request: WebSocket frames and
    AI replies scheduled after the triggering send has returned.
    """
    if _global_session_factory is None:
        logger.error("Background session requested before the session factory was set.")
        raise RuntimeError("Database session factory not initialized globally.")

    async with _global_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
