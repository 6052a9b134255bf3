"""Factory for the singleton token verifier."""

from typing import Optional

from packages.auth.providers.interface import TokenVerifierInterface
from packages.auth.providers.jwt_provider import JWTTokenVerifier

_verifier: Optional[TokenVerifierInterface] = None


def get_token_verifier() -> TokenVerifierInterface:
    """Get or create the token verifier instance.

    Returns:
        Token verifier configured from settings
    """
    global _verifier
    if _verifier is None:
        _verifier = JWTTokenVerifier()
    return _verifier
