"""Billing providers - abstracted external platform integrations."""

from packages.billing.providers.payment.factory import get_payment_provider
from packages.billing.providers.usage.factory import get_usage_provider

__all__ = [
    "get_payment_provider",
    "get_usage_provider",
]
