"""
Domain models for Stripe webhook payloads.

Strongly-typed Pydantic models for the Stripe events we reconcile from.
Unknown fields are ignored so Stripe API version bumps don't break parsing.
"""

from typing import Optional, Any
from enum import Enum
from pydantic import BaseModel, Field


class StripeWebhookType(str, Enum):
    """Stripe webhook event types we care about."""

    # Checkout
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"

    # Subscription
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"

    # Payment
    INVOICE_PAID = "invoice.paid"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    INVOICE_PAYMENT_ACTION_REQUIRED = "invoice.payment_action_required"

    # Payment method
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"
    PAYMENT_METHOD_DETACHED = "payment_method.detached"


class StripeMetadata(BaseModel):
    """Stripe metadata (we store user_id and tier here)."""

    user_id: Optional[str] = None
    tier: Optional[str] = None


class StripeSubscriptionData(BaseModel):
    """Stripe subscription object (only what reconciliation needs)."""

    id: str
    customer: str
    status: str
    cancel_at_period_end: bool = False
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)


class StripeInvoiceData(BaseModel):
    """Stripe invoice object."""

    id: str
    customer: str
    subscription: Optional[str] = None
    status: Optional[str] = None
    attempt_count: Optional[int] = None
    # Newer API versions nest the subscription under parent
    parent: Optional[dict[str, Any]] = None

    def subscription_id(self) -> Optional[str]:
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return details.get("subscription")


class StripeCheckoutSessionData(BaseModel):
    """Stripe checkout session object."""

    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
    client_reference_id: Optional[str] = None
    metadata: StripeMetadata = Field(default_factory=StripeMetadata)


class StripePaymentMethodData(BaseModel):
    """Stripe payment method object."""

    id: str
    customer: Optional[str] = None
    type: Optional[str] = None


class StripeEventData(BaseModel):
    """Stripe event data wrapper."""

    object: dict[str, Any]
    previous_attributes: Optional[dict[str, Any]] = None


class StripeWebhookPayload(BaseModel):
    """Complete Stripe webhook payload."""

    id: str
    type: str
    data: StripeEventData
    created: int
    livemode: bool = False

    def known_type(self) -> Optional[StripeWebhookType]:
        try:
            return StripeWebhookType(self.type)
        except ValueError:
            return None

