from abc import ABC, abstractmethod
from typing import Optional


class DistributedLockInterface(ABC):
    """Interface for distributed lock providers."""

    @abstractmethod
    async def acquire_lock(
        self, resource_key: str, timeout_seconds: int = 30
    ) -> Optional[str]:
        """
        Try once to acquire a lock for a resource. Never blocks waiting.

        Args:
            resource_key: The resource to lock (e.g., "subscription_transition:abc")
            timeout_seconds: Lock expiration time in seconds

        Returns:
            Lock token if acquired, None if someone else holds it
        """
        pass

    @abstractmethod
    async def release_lock(self, resource_key: str, lock_token: str) -> bool:
        """
        Release a lock.

        Args:
            resource_key: The locked resource
            lock_token: The token received when acquiring the lock

        Returns:
            True if released, False if token doesn't match or lock doesn't exist
        """
        pass

    @abstractmethod
    async def is_locked(self, resource_key: str) -> bool:
        """
        Check if a resource is currently locked.

        Args:
            resource_key: The resource to check

        Returns:
            True if locked, False otherwise
        """
        pass

    async def disconnect(self) -> None:
        """Release any connection held by the provider."""
        pass
