"""Domain models for billing."""

from packages.billing.models.domain.enums import (
    Capability,
    ResourceKind,
    SubscriptionOperation,
    SubscriptionStatus,
    SubscriptionTier,
    TransitionOutcome,
)
from packages.billing.models.domain.subscription import (
    Subscription,
    SubscriptionCreateModel,
    SubscriptionUpdateModel,
)
from packages.billing.models.domain.tiers import Tier, TierQuotas
from packages.billing.models.domain.usage import (
    QuotaDecision,
    QuotaSnapshot,
    ResourceQuota,
    UsageCounters,
)
from packages.billing.models.domain.payment import (
    CheckoutRedirect,
    PaymentMethod,
    ProcessorSubscription,
    SetupIntentHandle,
    SetupIntentResult,
)
from packages.billing.models.domain.transitions import TransitionResult

__all__ = [
    # Enums
    "Capability",
    "ResourceKind",
    "SubscriptionOperation",
    "SubscriptionStatus",
    "SubscriptionTier",
    "TransitionOutcome",
    # Subscription
    "Subscription",
    "SubscriptionCreateModel",
    "SubscriptionUpdateModel",
    # Catalog
    "Tier",
    "TierQuotas",
    # Usage
    "QuotaDecision",
    "QuotaSnapshot",
    "ResourceQuota",
    "UsageCounters",
    # Processor
    "CheckoutRedirect",
    "PaymentMethod",
    "ProcessorSubscription",
    "SetupIntentHandle",
    "SetupIntentResult",
    "TransitionResult",
]
