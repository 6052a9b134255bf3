"""
Hosted checkout API routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from common.core.exceptions import AppException
from common.db.session import get_db
from packages.auth.dependencies import get_current_active_user
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.billing.models.schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
)
from packages.billing.routes.errors import raise_for_error
from packages.billing.services.checkout_service import CheckoutService
from packages.billing.services.tier_catalog import get_tier_catalog

router = APIRouter()


@router.post("", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    current_user: AuthenticatedUser = Depends(get_current_active_user),
    db_session: AsyncSession = Depends(get_db),
):
    """
    Create a Stripe checkout session for a first-time subscription.

    Returns the URL to redirect the user to. Coming back to ``success_url``
    does not mean the subscription exists: call ``POST
    /subscriptions/refresh`` afterwards.
    """
    checkout_service = CheckoutService(db_session)
    try:
        tier = get_tier_catalog().parse(request.tier_id)
        redirect = await checkout_service.issue(
            user_id=current_user.user_id,
            tier=tier,
            success_url=str(request.success_url) if request.success_url else None,
            cancel_url=str(request.cancel_url) if request.cancel_url else None,
            email=current_user.email,
        )
    except AppException as e:
        raise_for_error(e)

    return CheckoutSessionResponse(
        redirect_url=redirect.redirect_url, session_id=redirect.session_id
    )
