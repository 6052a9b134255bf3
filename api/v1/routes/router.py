from fastapi import APIRouter, Depends

from api.v1.routes import health
from packages.auth.dependencies import get_current_active_user
from packages.billing.routes import (
    checkout,
    payment_methods,
    plans,
    subscriptions,
    webhooks,
)

api_router = APIRouter()

# Health check (no auth required)
api_router.include_router(health.router, prefix="/health", tags=["health"])

# Webhooks (no auth - signature verified internally)
api_router.include_router(webhooks.router, tags=["webhooks"])

# Plans (no auth - public pricing info)
api_router.include_router(plans.router, prefix="/plans", tags=["plans"])

# Billing routes (require auth)
api_router.include_router(
    subscriptions.router,
    prefix="/subscriptions",
    tags=["subscriptions"],
    dependencies=[Depends(get_current_active_user)],
)
api_router.include_router(
    payment_methods.router,
    prefix="/payment-methods",
    tags=["payment-methods"],
    dependencies=[Depends(get_current_active_user)],
)
api_router.include_router(
    checkout.router,
    prefix="/checkout-sessions",
    tags=["checkout"],
    dependencies=[Depends(get_current_active_user)],
)
