"""JWT verifier for tokens signed with a shared secret."""

from typing import Any, Dict, Optional

import jwt

from common.core.config import settings
from common.core.exceptions import SessionInvalidError
from common.core.telemetry import trace_span, get_logger
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.auth.providers.interface import TokenVerifierInterface

logger = get_logger(__name__)


class JWTTokenVerifier(TokenVerifierInterface):
    """Verifies session tokens locally, no call to the session provider"""

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        self.secret = secret or settings.auth_jwt_secret
        self.algorithm = algorithm or settings.auth_jwt_algorithm
        self.audience = audience if audience is not None else settings.auth_jwt_audience

        if not self.secret:
            raise ValueError("AUTH_JWT_SECRET is required to verify session tokens")

    @trace_span
    async def verify_token(self, token: str) -> AuthenticatedUser:
        claims = self._decode(token)

        user_id = claims.get("sub")
        if not user_id:
            raise SessionInvalidError("Token has no subject")

        return AuthenticatedUser(
            user_id=str(user_id), email=claims.get("email"), access_token=token
        )

    def _decode(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience or None,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_aud": bool(self.audience),
                    "require": ["exp", "sub"],
                },
            )
        except jwt.ExpiredSignatureError:
            raise SessionInvalidError("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Token validation failed: {e}")
            raise SessionInvalidError(f"Invalid token: {str(e)}")
