"""
Factory for getting usage provider instance.
"""

from typing import Optional

from common.core.config import settings
from common.core.constants import UsageProviderType
from common.core.telemetry import get_logger
from packages.billing.providers.usage.interface import UsageProviderInterface
from packages.billing.providers.usage.http_usage import HttpUsageProvider
from packages.billing.providers.usage.static_usage import StaticUsageProvider

logger = get_logger(__name__)

# Global instance
_usage_provider: Optional[UsageProviderInterface] = None


def get_usage_provider() -> UsageProviderInterface:
    """
    Get the configured usage provider.

    Returns:
        UsageProviderInterface: HTTP provider in deployed environments,
        static in-process counters when configured for local runs
    """
    global _usage_provider

    if _usage_provider is None:
        if settings.usage_provider == UsageProviderType.STATIC:
            _usage_provider = StaticUsageProvider()
        else:
            _usage_provider = HttpUsageProvider()
        logger.info(f"Initialized {settings.usage_provider.value} usage provider")

    return _usage_provider
