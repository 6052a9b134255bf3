import uuid
from typing import Optional
import redis.asyncio as redis

from common.core.config import settings
from common.core.telemetry import get_logger
from .interface import DistributedLockInterface

logger = get_logger(__name__)

# Atomic check-and-delete so we never release someone else's lock
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisLock(DistributedLockInterface):
    """Redis-based distributed lock (SET NX EX)."""

    def __init__(self, url: Optional[str] = None):
        self._url = url or settings.redis_connection_url
        self._client: Optional[redis.Redis] = None
        self._lock_prefix = "lock:"

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Redis lock provider disconnected")

    async def acquire_lock(
        self, resource_key: str, timeout_seconds: int = 30
    ) -> Optional[str]:
        lock_key = f"{self._lock_prefix}{resource_key}"
        lock_token = str(uuid.uuid4())

        acquired = await self._get_client().set(
            lock_key,
            lock_token,
            nx=True,  # Only set if not exists
            ex=timeout_seconds,
        )

        if acquired:
            logger.info(f"Acquired lock for {resource_key}")
            return lock_token

        logger.debug(f"Failed to acquire lock for {resource_key} - already locked")
        return None

    async def release_lock(self, resource_key: str, lock_token: str) -> bool:
        lock_key = f"{self._lock_prefix}{resource_key}"

        result = await self._get_client().eval(_RELEASE_SCRIPT, 1, lock_key, lock_token)

        if result:
            logger.info(f"Released lock for {resource_key}")
            return True

        logger.warning(
            f"Cannot release lock for {resource_key} - token mismatch or lock expired"
        )
        return False

    async def is_locked(self, resource_key: str) -> bool:
        exists = await self._get_client().exists(f"{self._lock_prefix}{resource_key}")
        return bool(exists)
