"""Usage providers - resource counters owned by other services."""

from packages.billing.providers.usage.interface import UsageProviderInterface
from packages.billing.providers.usage.factory import get_usage_provider

__all__ = [
    "UsageProviderInterface",
    "get_usage_provider",
]
