"""
Domain models for payment processor objects.

These are processor-agnostic views of what the payment provider returns;
card data itself never reaches this service.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from packages.billing.models.domain.enums import (
    SubscriptionStatus,
    SubscriptionTier,
)


class PaymentMethod(BaseModel):
    """A stored card, as reported by the processor."""

    id: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool = False


class SetupIntentHandle(BaseModel):
    """One-time handle the client uses to collect a card directly with the processor."""

    setup_intent_id: str
    client_secret: str
    customer_id: str


class SetupIntentResult(BaseModel):
    """Outcome of confirming a setup intent."""

    setup_intent_id: str
    status: str  # succeeded | requires_action | requires_payment_method | processing
    payment_method_id: Optional[str] = None
    client_secret: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def requires_action(self) -> bool:
        return self.status == "requires_action"


class ProcessorSubscription(BaseModel):
    """
    Subscription state as confirmed by the processor.

    ``tier`` is resolved by the provider from the subscription's price,
    falling back to the tier stored in its metadata.
    """

    id: str
    customer_id: str
    status: SubscriptionStatus
    tier: Optional[SubscriptionTier] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    default_payment_method_id: Optional[str] = None
    user_id: Optional[str] = None

    # Set when the first invoice needs strong customer authentication
    pending_payment_client_secret: Optional[str] = None
    raw_status: Optional[str] = None

    @property
    def requires_action(self) -> bool:
        return self.pending_payment_client_secret is not None


class CheckoutRedirect(BaseModel):
    """Hosted checkout session. The redirect result is advisory only."""

    session_id: str
    redirect_url: str
    customer_id: str
