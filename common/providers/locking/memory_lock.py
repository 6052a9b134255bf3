import time
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

from common.core.telemetry import get_logger
from .interface import DistributedLockInterface

logger = get_logger(__name__)


@dataclass
class LockEntry:
    """A held lock and when it lapses."""

    token: str
    expires_at: float

    def is_expired(self) -> bool:
        return time.monotonic() >= self.expires_at


class MemoryLock(DistributedLockInterface):
    """In-process lock. Only serializes within one worker process."""

    def __init__(self):
        self._locks: Dict[str, LockEntry] = {}
        logger.info("Memory lock provider initialized")

    def _live_entry(self, resource_key: str) -> Optional[LockEntry]:
        entry = self._locks.get(resource_key)
        if entry is not None and entry.is_expired():
            del self._locks[resource_key]
            return None
        return entry

    async def acquire_lock(
        self, resource_key: str, timeout_seconds: int = 30
    ) -> Optional[str]:
        if self._live_entry(resource_key) is not None:
            logger.debug(f"Failed to acquire lock for {resource_key} - already locked")
            return None

        token = str(uuid.uuid4())
        self._locks[resource_key] = LockEntry(
            token=token, expires_at=time.monotonic() + timeout_seconds
        )
        return token

    async def release_lock(self, resource_key: str, lock_token: str) -> bool:
        entry = self._live_entry(resource_key)
        if entry is None or entry.token != lock_token:
            logger.warning(
                f"Cannot release lock for {resource_key} - token mismatch or lock expired"
            )
            return False
        del self._locks[resource_key]
        return True

    async def is_locked(self, resource_key: str) -> bool:
        return self._live_entry(resource_key) is not None
