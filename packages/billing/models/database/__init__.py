"""Database models for billing."""

from packages.billing.models.database.billing_customer import BillingCustomerEntity
from packages.billing.models.database.subscription import SubscriptionEntity

__all__ = [
    "BillingCustomerEntity",
    "SubscriptionEntity",
]
