"""
API schemas for billing operations.

Request and response models for billing endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, HttpUrl

from packages.billing.models.domain.enums import (
    SubscriptionStatus,
    SubscriptionTier,
    TransitionOutcome,
)
from packages.billing.models.domain.payment import PaymentMethod
from packages.billing.models.domain.subscription import Subscription
from packages.billing.models.domain.transitions import TransitionResult
from packages.billing.models.domain.usage import QuotaDecision, QuotaSnapshot


# ============================================================================
# Subscription Schemas
# ============================================================================


class SubscriptionStatusResponse(BaseModel):
    """Current subscription status."""

    subscription_id: Optional[str] = Field(
        default=None, description="Stripe subscription ID"
    )
    tier_id: SubscriptionTier
    effective_tier_id: SubscriptionTier = Field(
        ..., description="Tier whose quotas apply right now"
    )
    status: SubscriptionStatus
    has_access: bool = Field(..., description="Whether the paid tier currently applies")
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    default_payment_method: Optional[str] = None

    @classmethod
    def from_subscription(
        cls, subscription: Optional[Subscription]
    ) -> "SubscriptionStatusResponse":
        if subscription is None:
            return cls(
                tier_id=SubscriptionTier.FREE,
                effective_tier_id=SubscriptionTier.FREE,
                status=SubscriptionStatus.NONE,
                has_access=False,
            )
        return cls(
            subscription_id=subscription.stripe_subscription_id,
            tier_id=subscription.tier,
            effective_tier_id=subscription.effective_tier(),
            status=subscription.status,
            has_access=subscription.has_access(),
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
            default_payment_method=subscription.default_payment_method_id,
        )


class CreateSubscriptionRequest(BaseModel):
    """Request to start a paid subscription."""

    tier_id: str
    payment_method_id: Optional[str] = Field(
        default=None, description="Card to charge. Defaults to the default card."
    )
    # Used only when no card is stored and hosted checkout takes over
    success_url: Optional[HttpUrl] = None
    cancel_url: Optional[HttpUrl] = None


class ChangeTierRequest(BaseModel):
    """Request to move to another tier."""

    new_tier_id: str


class CancelSubscriptionRequest(BaseModel):
    """Request to cancel at period end."""

    subscription_id: Optional[str] = None


class SubscriptionTransitionResponse(BaseModel):
    """Result of a subscription transition. Branch on ``outcome``."""

    outcome: TransitionOutcome
    message: Optional[str] = None
    subscription: Optional[SubscriptionStatusResponse] = None
    redirect_url: Optional[str] = Field(
        default=None, description="Hosted checkout URL when outcome is checkout_required"
    )
    client_secret: Optional[str] = Field(
        default=None, description="Payment secret when outcome is action_required"
    )

    @classmethod
    def from_result(cls, result: TransitionResult) -> "SubscriptionTransitionResponse":
        return cls(
            outcome=result.outcome,
            message=result.message,
            subscription=(
                SubscriptionStatusResponse.from_subscription(result.subscription)
                if result.subscription
                else None
            ),
            redirect_url=result.redirect_url,
            client_secret=result.client_secret,
        )


# ============================================================================
# Quota Schemas
# ============================================================================


class ResourceQuotaResponse(BaseModel):
    used: int
    limit: Optional[int] = None
    unlimited: bool


class QuotaSnapshotResponse(BaseModel):
    """Usage against every gated resource."""

    tier_id: SubscriptionTier
    resources: Dict[str, ResourceQuotaResponse]

    @classmethod
    def from_snapshot(cls, snapshot: QuotaSnapshot) -> "QuotaSnapshotResponse":
        return cls(
            tier_id=snapshot.tier,
            resources={
                kind.value: ResourceQuotaResponse(**quota.model_dump())
                for kind, quota in snapshot.resources.items()
            },
        )


class QuotaCheckResponse(BaseModel):
    """Whether one more unit of a resource may be created."""

    resource_kind: str
    tier_id: SubscriptionTier
    allowed: bool
    used: int
    limit: Optional[int] = None
    reason: Optional[str] = Field(
        default=None, description="Upgrade prompt when not allowed"
    )

    @classmethod
    def from_decision(cls, decision: QuotaDecision) -> "QuotaCheckResponse":
        return cls(
            resource_kind=decision.resource_kind.value,
            tier_id=decision.tier,
            allowed=decision.allowed,
            used=decision.used,
            limit=decision.limit,
            reason=decision.reason,
        )


# ============================================================================
# Payment Method Schemas
# ============================================================================


class PaymentMethodResponse(BaseModel):
    id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool

    @classmethod
    def from_payment_method(cls, method: PaymentMethod) -> "PaymentMethodResponse":
        return cls(**method.model_dump())


class SetupIntentResponse(BaseModel):
    """Secret the browser uses to hand card details straight to Stripe."""

    client_secret: str
    setup_intent_id: str


class ConfirmPaymentMethodRequest(BaseModel):
    """Complete a card attach with a Stripe-tokenized card."""

    client_secret: str
    payment_method_token: str = Field(
        ..., description="Stripe.js PaymentMethod id (pm_...) or card token (tok_...)"
    )
    billing_name: Optional[str] = Field(default=None, max_length=200)


class PaymentMethodTransitionResponse(BaseModel):
    """Result of an attach, set-default or remove. Branch on ``outcome``."""

    outcome: TransitionOutcome
    message: Optional[str] = None
    payment_method: Optional[PaymentMethodResponse] = None
    client_secret: Optional[str] = None

    @classmethod
    def from_result(cls, result: TransitionResult) -> "PaymentMethodTransitionResponse":
        return cls(
            outcome=result.outcome,
            message=result.message,
            payment_method=(
                PaymentMethodResponse.from_payment_method(result.payment_method)
                if result.payment_method
                else None
            ),
            client_secret=result.client_secret,
        )


PaymentMethodListResponse = List[PaymentMethodResponse]


# ============================================================================
# Checkout Schemas
# ============================================================================


class CheckoutSessionRequest(BaseModel):
    """Request to create a hosted checkout session."""

    tier_id: str
    success_url: Optional[HttpUrl] = None
    cancel_url: Optional[HttpUrl] = None


class CheckoutSessionResponse(BaseModel):
    """Response with checkout URL."""

    redirect_url: str = Field(..., description="Stripe checkout session URL")
    session_id: str
