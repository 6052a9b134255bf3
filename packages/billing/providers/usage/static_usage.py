"""In-process usage provider for local development and tests."""

from typing import Dict, Optional

from packages.billing.models.domain.usage import UsageCounters
from packages.billing.providers.usage.interface import UsageProviderInterface


class StaticUsageProvider(UsageProviderInterface):
    """Serves counters from a dict; unknown users have no resources."""

    def __init__(self, counters: Optional[Dict[str, UsageCounters]] = None):
        self.counters: Dict[str, UsageCounters] = dict(counters or {})

    def set_counters(self, user_id: str, counters: UsageCounters) -> None:
        self.counters[user_id] = counters

    async def get_counters(
        self, user_id: str, bearer_token: Optional[str] = None
    ) -> UsageCounters:
        return self.counters.get(user_id, UsageCounters())
