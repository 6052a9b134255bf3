"""Billing repositories."""

from packages.billing.repositories.billing_customer_repository import (
    BillingCustomerRepository,
)
from packages.billing.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "BillingCustomerRepository",
    "SubscriptionRepository",
]
