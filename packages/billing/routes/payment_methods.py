"""
Payment method API routes.

Card details never pass through these endpoints: the browser sends them to
Stripe with the setup intent secret and we only receive the resulting token.
"""

from typing import List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.exceptions import AppException
from common.db.session import get_db
from common.providers.rate_limiter.limiter import limiter
from packages.auth.dependencies import get_current_active_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing.models.schemas.billing import (
    ConfirmPaymentMethodRequest,
    PaymentMethodResponse,
    PaymentMethodTransitionResponse,
    SetupIntentResponse,
)
from packages.billing.routes.errors import raise_for_error, raise_for_outcome
from packages.billing.services.payment_method_service import PaymentMethodService

router = APIRouter()


@router.get("", response_model=List[PaymentMethodResponse])
async def list_payment_methods(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """Stored cards, default first."""
    payment_method_service = PaymentMethodService(db_session)
    try:
        methods = await payment_method_service.list_payment_methods(
            current_user.user_id
        )
    except AppException as e:
        raise_for_error(e)
    return [PaymentMethodResponse.from_payment_method(m) for m in methods]


@router.post("/setup-intent", response_model=SetupIntentResponse)
@limiter.limit("10/minute")
async def begin_attach(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """Start adding a card. Returns the secret Stripe.js needs."""
    payment_method_service = PaymentMethodService(db_session)
    try:
        handle = await payment_method_service.begin_attach(
            current_user.user_id, email=current_user.email
        )
    except AppException as e:
        raise_for_error(e)
    return SetupIntentResponse(
        client_secret=handle.client_secret, setup_intent_id=handle.setup_intent_id
    )


@router.post("/confirm", response_model=PaymentMethodTransitionResponse)
@limiter.limit("10/minute")
async def confirm_attach(
    request: Request,
    body: ConfirmPaymentMethodRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Finish adding a card.

    ``action_required`` means the bank wants 3-D Secure: complete it in the
    browser with the returned client secret, then call this again.
    """
    payment_method_service = PaymentMethodService(db_session)
    result = await payment_method_service.confirm_attach(
        user_id=current_user.user_id,
        client_secret=body.client_secret,
        payment_method_token=body.payment_method_token,
        billing_name=body.billing_name,
    )
    raise_for_outcome(result)
    return PaymentMethodTransitionResponse.from_result(result)


@router.post(
    "/{payment_method_id}/default", response_model=PaymentMethodTransitionResponse
)
async def set_default_payment_method(
    payment_method_id: str,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """Use this card for renewals."""
    payment_method_service = PaymentMethodService(db_session)
    result = await payment_method_service.set_default(
        current_user.user_id, payment_method_id
    )
    raise_for_outcome(result)
    return PaymentMethodTransitionResponse.from_result(result)


@router.delete("/{payment_method_id}", response_model=PaymentMethodTransitionResponse)
async def remove_payment_method(
    payment_method_id: str,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Remove a card.

    The default card can't be removed while other cards exist (409); set
    another default first.
    """
    payment_method_service = PaymentMethodService(db_session)
    result = await payment_method_service.remove(
        current_user.user_id, payment_method_id
    )
    raise_for_outcome(result)
    return PaymentMethodTransitionResponse.from_result(result)
