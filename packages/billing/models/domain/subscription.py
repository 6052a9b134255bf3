"""
Domain models for subscriptions.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, field_validator

from packages.billing.models.domain.enums import (
    SubscriptionStatus,
    SubscriptionTier,
)


class Subscription(BaseModel):
    """
    A user's subscription as last confirmed by the payment processor.

    Represents:
    - Tier and status
    - Billing period and scheduled cancellation
    - Default payment method used for renewals
    - Processor linkage (Stripe subscription id)
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str

    tier: SubscriptionTier
    status: SubscriptionStatus

    stripe_subscription_id: Optional[str] = None
    default_payment_method_id: Optional[str] = None

    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None

    # Bumped on every confirmed transition; part of processor idempotency keys
    version: int = 0
    last_synced_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_access(self) -> bool:
        """Check if the paid tier's entitlements currently apply."""
        return self.status.has_access()

    def effective_tier(self) -> SubscriptionTier:
        """
        Tier used for entitlement decisions.

        Beta always applies. A lapsed subscription falls back to FREE; a
        soft-canceled one keeps its tier until the period boundary.
        """
        if self.tier == SubscriptionTier.BETA:
            return SubscriptionTier.BETA
        if self.has_access():
            return self.tier
        return SubscriptionTier.FREE


class SubscriptionCreateModel(BaseModel):
    """Model for writing a processor-confirmed subscription for the first time."""

    user_id: str
    tier: str
    status: str
    stripe_subscription_id: Optional[str] = None
    default_payment_method_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    version: int = 1
    last_synced_at: Optional[datetime] = None

    @field_validator("tier", mode="before")
    @classmethod
    def validate_tier(cls, v):
        if isinstance(v, SubscriptionTier):
            return v.value
        return v

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v):
        if isinstance(v, SubscriptionStatus):
            return v.value
        return v


class SubscriptionUpdateModel(BaseModel):
    """Model for updating a subscription. Only fields explicitly set are written."""

    tier: Optional[str] = None
    status: Optional[str] = None

    stripe_subscription_id: Optional[str] = None
    default_payment_method_id: Optional[str] = None

    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    canceled_at: Optional[datetime] = None

    version: Optional[int] = None
    last_synced_at: Optional[datetime] = None

    @field_validator("tier", mode="before")
    @classmethod
    def validate_tier(cls, v):
        if isinstance(v, SubscriptionTier):
            return v.value
        return v

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v):
        if isinstance(v, SubscriptionStatus):
            return v.value
        return v
