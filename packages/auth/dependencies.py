from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status, Header

from common.core.exceptions import SessionInvalidError
from common.core.telemetry import trace_span, get_logger
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.auth.providers.factory import get_token_verifier
from packages.auth.providers.interface import TokenVerifierInterface

logger = get_logger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"outcome": "session_invalid", "message": detail},
        headers={"WWW-Authenticate": "Bearer"},
    )


@trace_span
async def get_current_user(
    authorization: Annotated[Optional[str], Header()] = None,
    verifier: TokenVerifierInterface = Depends(get_token_verifier),
) -> AuthenticatedUser:
    """Get current authenticated user from the bearer token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise _unauthorized("Authorization header missing or invalid")

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise _unauthorized("Authorization header missing or invalid")

    try:
        return await verifier.verify_token(token)
    except SessionInvalidError as e:
        raise _unauthorized(str(e))


@trace_span
async def get_current_active_user(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Get current active user."""
    logger.debug(f"Authenticated user_id={current_user.user_id}")
    return current_user
