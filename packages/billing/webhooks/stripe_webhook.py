"""
Stripe webhook handler for subscription reconciliation.

Handles events from Stripe payment platform:
- Checkout session completion (first subscription via hosted checkout)
- Subscription lifecycle events (renewals, scheduled cancels taking effect)
- Invoice payment success/failure (active <-> past_due)
- Payment method detachment

Event payloads only tell us *which* subscription changed; the current state
is re-read from Stripe, so duplicate or out-of-order deliveries are harmless.
"""

from typing import Optional

import stripe
from fastapi import Request, HTTPException, status
from pydantic import ValidationError

from common.core.config import settings
from common.core.exceptions import TransitionInProgressError
from common.core.telemetry import get_logger
from common.db.scoped import transaction
from packages.billing.models.domain.stripe_webhooks import (
    StripeWebhookPayload,
    StripeWebhookType,
    StripeCheckoutSessionData,
    StripeSubscriptionData,
    StripeInvoiceData,
    StripePaymentMethodData,
)
from packages.billing.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)


async def handle_stripe_webhook(request: Request) -> dict[str, str]:
    """
    Handle incoming webhook from Stripe.

    Validates webhook signature and routes to appropriate handler. Answers
    400 for requests that will never succeed and 500 for processing
    failures, so Stripe redelivers the latter.
    """
    payload_bytes = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header",
        )

    try:
        stripe.Webhook.construct_event(
            payload_bytes, sig_header, settings.stripe_webhook_secret
        )
    except stripe.SignatureVerificationError as e:
        logger.error(f"Stripe webhook signature verification failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature"
        )
    except ValueError as e:
        logger.error(f"Stripe webhook body is not valid JSON: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )

    try:
        payload = StripeWebhookPayload.model_validate_json(payload_bytes)
    except ValidationError as e:
        logger.error(
            "Invalid Stripe webhook payload", extra={"validation_errors": e.errors()}
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )

    logger.info(
        f"Received Stripe webhook: {payload.type}",
        extra={
            "event_id": payload.id,
            "event_type": payload.type,
            "livemode": payload.livemode,
        },
    )

    try:
        async with transaction() as db_session:
            reconciliation = ReconciliationService(db_session)
            await process_event(payload, reconciliation)
    except TransitionInProgressError as e:
        logger.info(
            f"Deferring Stripe webhook {payload.id}: transition in progress",
            extra={"event_id": payload.id, "user_id": e.user_id},
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Subscription transition in progress, retry later",
        )
    except ValidationError as e:
        logger.error(
            f"Invalid Stripe {payload.type} object",
            extra={"event_id": payload.id, "validation_errors": e.errors()},
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload"
        )
    except Exception as e:
        logger.error(
            f"Failed to process Stripe webhook: {str(e)}",
            extra={"event_id": payload.id, "error": str(e)},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        )

    return {"status": "success"}


async def process_event(
    payload: StripeWebhookPayload, reconciliation: ReconciliationService
) -> None:
    """Route a verified event to its handler."""
    event_type = payload.known_type()
    data = payload.data.object

    if event_type == StripeWebhookType.CHECKOUT_SESSION_COMPLETED:
        await _handle_checkout_completed(data, reconciliation)
    elif event_type in (
        StripeWebhookType.SUBSCRIPTION_CREATED,
        StripeWebhookType.SUBSCRIPTION_UPDATED,
        StripeWebhookType.SUBSCRIPTION_DELETED,
    ):
        await _handle_subscription_changed(data, reconciliation)
    elif event_type in (
        StripeWebhookType.INVOICE_PAID,
        StripeWebhookType.INVOICE_PAYMENT_FAILED,
        StripeWebhookType.INVOICE_PAYMENT_ACTION_REQUIRED,
    ):
        await _handle_invoice_event(data, reconciliation)
    elif event_type == StripeWebhookType.PAYMENT_METHOD_DETACHED:
        await _handle_payment_method_detached(data, reconciliation)
    else:
        logger.info(f"Unhandled Stripe webhook type: {payload.type}")


async def _handle_checkout_completed(
    data: dict, reconciliation: ReconciliationService
) -> None:
    """
    Handle checkout.session.completed event.

    The hosted flow created the Stripe subscription; record it locally.
    """
    session = StripeCheckoutSessionData.model_validate(data)
    if not session.subscription:
        logger.info(
            f"Checkout session {session.id} has no subscription",
            extra={"session_id": session.id},
        )
        return

    user_id: Optional[str] = session.client_reference_id or session.metadata.user_id
    logger.info(
        f"Checkout completed for user {user_id}",
        extra={
            "user_id": user_id,
            "session_id": session.id,
            "subscription_id": session.subscription,
        },
    )
    await reconciliation.sync_subscription(session.subscription, user_hint=user_id)


async def _handle_subscription_changed(
    data: dict, reconciliation: ReconciliationService
) -> None:
    """Handle customer.subscription.created/updated/deleted events."""
    subscription = StripeSubscriptionData.model_validate(data)
    logger.info(
        f"Stripe subscription {subscription.id} is {subscription.status}",
        extra={
            "subscription_id": subscription.id,
            "customer_id": subscription.customer,
            "status": subscription.status,
        },
    )
    await reconciliation.sync_subscription(
        subscription.id, user_hint=subscription.metadata.user_id
    )


async def _handle_invoice_event(
    data: dict, reconciliation: ReconciliationService
) -> None:
    """Handle invoice.paid / invoice.payment_failed: status may have moved."""
    invoice = StripeInvoiceData.model_validate(data)
    subscription_id = invoice.subscription_id()
    if not subscription_id:
        logger.info(
            f"Invoice {invoice.id} is not for a subscription",
            extra={"invoice_id": invoice.id},
        )
        return

    logger.info(
        f"Invoice {invoice.id} for subscription {subscription_id}: {invoice.status}",
        extra={
            "invoice_id": invoice.id,
            "subscription_id": subscription_id,
            "attempt_count": invoice.attempt_count,
        },
    )
    await reconciliation.sync_subscription(subscription_id)


async def _handle_payment_method_detached(
    data: dict, reconciliation: ReconciliationService
) -> None:
    """Handle payment_method.detached event."""
    payment_method = StripePaymentMethodData.model_validate(data)
    await reconciliation.clear_detached_payment_method(payment_method.id)
