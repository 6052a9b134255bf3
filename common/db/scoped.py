"""
Explicit transaction boundary for code that runs outside a request.

Webhook handlers and background jobs have no FastAPI ``get_db`` dependency,
so they open their own unit of work:

    async with transaction() as session:
        service = SubscriptionService(session)
        await service.refresh(user_id)
    # Commits here, or rolls back if the block raised
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from common.core.telemetry import get_logger
from common.db.session import AsyncSessionLocal

logger = get_logger(__name__)


@asynccontextmanager
async def transaction() -> AsyncGenerator[AsyncSession, None]:
    """
    Open a session, commit on success, roll back on exception.

    Yields:
        The session for this transaction

    Raises:
        Exception: Re-raises any exception after rollback
    """
    start = time.perf_counter()
    async with AsyncSessionLocal() as session:
        acquire_time = time.perf_counter() - start
        logger.debug(f"Transaction session acquire: {acquire_time * 1000:.2f}ms")

        try:
            yield session
            commit_start = time.perf_counter()
            await session.commit()
            commit_time = time.perf_counter() - commit_start
            logger.debug(f"Transaction commit: {commit_time * 1000:.2f}ms")
        except Exception as e:
            logger.error(f"Transaction rollback due to: {e}")
            await session.rollback()
            raise
