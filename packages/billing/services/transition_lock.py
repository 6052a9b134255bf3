"""Per-user lock serializing everything that rewrites a user's subscription."""

from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.config import settings
from common.core.exceptions import TransitionInProgressError
from common.core.telemetry import get_logger
from common.providers.locking.interface import DistributedLockInterface
from packages.billing.lock_keys import subscription_transition_key

logger = get_logger(__name__)


@asynccontextmanager
async def transition_lock(
    locks: DistributedLockInterface, db_session: AsyncSession, user_id: str
):
    """
    Hold the user's transition lock for the duration of the block.

    Local writes are committed before the lock is released so the next
    holder reads them.

    Raises:
        TransitionInProgressError: another transition holds the lock
    """
    key = subscription_transition_key(user_id)
    token = await locks.acquire_lock(key, settings.subscription_lock_ttl_seconds)
    if not token:
        logger.warning(
            f"Rejected concurrent subscription transition for user {user_id}",
            extra={"user_id": user_id},
        )
        raise TransitionInProgressError(user_id)

    try:
        yield
        await db_session.commit()
    finally:
        await locks.release_lock(key, token)
