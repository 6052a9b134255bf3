"""
Interface for usage counter providers.

Projects, uploads and team membership are owned by other services; this
package only ever reads their counts.
"""

from abc import ABC, abstractmethod
from typing import Optional

from packages.billing.models.domain.usage import UsageCounters


class UsageProviderInterface(ABC):
    """Abstract interface for reading a user's resource counters."""

    @abstractmethod
    async def get_counters(
        self, user_id: str, bearer_token: Optional[str] = None
    ) -> UsageCounters:
        """
        Fetch current resource counts for a user.

        Args:
            user_id: Application user id
            bearer_token: Caller credential to forward to the owning service

        Returns:
            UsageCounters snapshot

        Raises:
            UsageUnavailableError: owning service unreachable or answered badly
        """
        pass
