"""
Subscription API routes.

Protected endpoints for subscription status, quotas and tier transitions.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.exceptions import AppException
from common.db.session import get_db
from packages.auth.dependencies import get_current_active_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing.models.domain.enums import TransitionOutcome
from packages.billing.models.schemas.billing import (
    CancelSubscriptionRequest,
    ChangeTierRequest,
    CreateSubscriptionRequest,
    QuotaCheckResponse,
    QuotaSnapshotResponse,
    SubscriptionStatusResponse,
    SubscriptionTransitionResponse,
)
from packages.billing.routes.errors import raise_for_error, raise_for_outcome
from packages.billing.services.quota_service import QuotaService
from packages.billing.services.subscription_service import SubscriptionService

router = APIRouter()


# ============================================================================
# Status and quotas
# ============================================================================


@router.get("/status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Get current subscription status.

    Users who never subscribed get tier ``free`` with status ``none``.
    """
    subscription_service = SubscriptionService(db_session)
    subscription = await subscription_service.get_status(current_user.user_id)
    return SubscriptionStatusResponse.from_subscription(subscription)


@router.get("/quota", response_model=QuotaSnapshotResponse)
async def get_quota_snapshot(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """Usage against every gated resource for the current tier."""
    quota_service = QuotaService(db_session)
    try:
        snapshot = await quota_service.get_snapshot(
            current_user.user_id, bearer_token=current_user.access_token
        )
    except AppException as e:
        raise_for_error(e)
    return QuotaSnapshotResponse.from_snapshot(snapshot)


@router.get("/quota/{resource_kind}", response_model=QuotaCheckResponse)
async def check_quota(
    resource_kind: str,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Check whether one more project, upload or seat may be created.

    Advisory: the owning service re-checks when it actually creates.
    """
    quota_service = QuotaService(db_session)
    try:
        kind = quota_service.parse_resource_kind(resource_kind)
        decision = await quota_service.can_create(
            current_user.user_id, kind, bearer_token=current_user.access_token
        )
    except AppException as e:
        raise_for_error(e)
    return QuotaCheckResponse.from_decision(decision)


# ============================================================================
# Transitions
# ============================================================================


@router.post(
    "",
    response_model=SubscriptionTransitionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_subscription(
    request: CreateSubscriptionRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Start a paid subscription.

    Returns ``checkout_required`` with a redirect URL when the user has no
    card yet, and ``action_required`` with a client secret when the bank
    wants to authenticate the first payment.
    """
    subscription_service = SubscriptionService(db_session)
    result = await subscription_service.subscribe(
        user_id=current_user.user_id,
        tier=request.tier_id,
        payment_method_id=request.payment_method_id,
        email=current_user.email,
        success_url=str(request.success_url) if request.success_url else None,
        cancel_url=str(request.cancel_url) if request.cancel_url else None,
    )
    raise_for_outcome(result)

    response = SubscriptionTransitionResponse.from_result(result)
    if result.outcome != TransitionOutcome.OK:
        # Nothing was created yet
        return JSONResponse(
            status_code=status.HTTP_200_OK, content=response.model_dump(mode="json")
        )
    return response


@router.post("/update", response_model=SubscriptionTransitionResponse)
async def change_tier(
    request: ChangeTierRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Change to another tier in place (proration handled by Stripe).

    Changing to ``free`` schedules cancellation at the period end.
    """
    subscription_service = SubscriptionService(db_session)
    result = await subscription_service.change_tier(
        current_user.user_id, request.new_tier_id
    )
    raise_for_outcome(result)
    return SubscriptionTransitionResponse.from_result(result)


@router.post("/cancel", response_model=SubscriptionTransitionResponse)
async def cancel_subscription(
    request: Optional[CancelSubscriptionRequest] = None,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Cancel at the end of the current billing period.

    Access continues until then.
    """
    subscription_service = SubscriptionService(db_session)
    result = await subscription_service.cancel(
        current_user.user_id,
        subscription_id=request.subscription_id if request else None,
    )
    raise_for_outcome(result)
    return SubscriptionTransitionResponse.from_result(result)


@router.post("/reactivate", response_model=SubscriptionTransitionResponse)
async def reactivate_subscription(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """Undo a scheduled cancellation before the period ends."""
    subscription_service = SubscriptionService(db_session)
    result = await subscription_service.reactivate(current_user.user_id)
    raise_for_outcome(result)
    return SubscriptionTransitionResponse.from_result(result)


@router.post("/refresh", response_model=SubscriptionTransitionResponse)
async def refresh_subscription(
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Re-read the subscription from Stripe.

    Call after returning from hosted checkout; the redirect alone proves
    nothing.
    """
    subscription_service = SubscriptionService(db_session)
    result = await subscription_service.refresh(current_user.user_id)
    raise_for_outcome(result)
    return SubscriptionTransitionResponse.from_result(result)
