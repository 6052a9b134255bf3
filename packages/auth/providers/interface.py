from abc import ABC, abstractmethod

from packages.auth.models.domain.authenticated_user import AuthenticatedUser


class TokenVerifierInterface(ABC):
    """Interface for verifying bearer tokens issued by the session layer"""

    @abstractmethod
    async def verify_token(self, token: str) -> AuthenticatedUser:
        """
        Verify a bearer token and extract the caller.

        Raises:
            SessionInvalidError: token missing claims, badly signed or expired
        """
        pass
