"""
Tagged results for mutating billing operations.

Expected failures (declines, conflicts, outages) come back as a
``TransitionResult`` with an outcome tag instead of an exception.
"""

from typing import Optional
from pydantic import BaseModel

from packages.billing.models.domain.enums import TransitionOutcome
from packages.billing.models.domain.payment import PaymentMethod
from packages.billing.models.domain.subscription import Subscription


class TransitionResult(BaseModel):
    """Outcome of a subscription or payment-method operation."""

    outcome: TransitionOutcome
    subscription: Optional[Subscription] = None
    payment_method: Optional[PaymentMethod] = None
    message: Optional[str] = None

    # checkout_required
    redirect_url: Optional[str] = None
    # action_required
    client_secret: Optional[str] = None
    # processor_rejected
    decline_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == TransitionOutcome.OK

    @classmethod
    def success(
        cls,
        subscription: Optional[Subscription] = None,
        payment_method: Optional[PaymentMethod] = None,
        message: Optional[str] = None,
    ) -> "TransitionResult":
        return cls(
            outcome=TransitionOutcome.OK,
            subscription=subscription,
            payment_method=payment_method,
            message=message,
        )

    @classmethod
    def failure(
        cls,
        outcome: TransitionOutcome,
        message: str,
        subscription: Optional[Subscription] = None,
        decline_code: Optional[str] = None,
    ) -> "TransitionResult":
        return cls(
            outcome=outcome,
            message=message,
            subscription=subscription,
            decline_code=decline_code,
        )
