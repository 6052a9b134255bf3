"""
Unit tests for bearer token verification.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import pytest

from common.core.config import settings
from common.core.exceptions import SessionInvalidError
from packages.auth.providers.jwt_provider import JWTTokenVerifier
from tests.conftest import TEST_USER_ID

SECRET = "unit-test-secret"


def make_token(
    secret: str = SECRET,
    expires_in: timedelta = timedelta(minutes=5),
    **claims,
) -> str:
    payload = {
        "sub": TEST_USER_ID,
        "email": "ana@example.com",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    payload.update(claims)
    return jwt.encode(
        {k: v for k, v in payload.items() if v is not None}, secret, algorithm="HS256"
    )


@pytest.fixture
def verifier():
    return JWTTokenVerifier(secret=SECRET, algorithm="HS256", audience="authenticated")


@pytest.mark.asyncio
@patch("common.core.telemetry.tracer.start_as_current_span")
class TestJWTTokenVerifier:
    async def test_valid_token(self, mock_start_span, verifier):
        token = make_token()

        user = await verifier.verify_token(token)

        assert user.user_id == TEST_USER_ID
        assert user.email == "ana@example.com"
        assert user.access_token == token

    async def test_expired_token(self, mock_start_span, verifier):
        with pytest.raises(SessionInvalidError, match="expired"):
            await verifier.verify_token(make_token(expires_in=timedelta(minutes=-1)))

    async def test_wrong_signature(self, mock_start_span, verifier):
        with pytest.raises(SessionInvalidError):
            await verifier.verify_token(make_token(secret="someone-else"))

    async def test_wrong_audience(self, mock_start_span, verifier):
        with pytest.raises(SessionInvalidError):
            await verifier.verify_token(make_token(aud="service_role"))

    async def test_missing_subject(self, mock_start_span, verifier):
        with pytest.raises(SessionInvalidError):
            await verifier.verify_token(make_token(sub=None))

    async def test_garbage(self, mock_start_span, verifier):
        with pytest.raises(SessionInvalidError):
            await verifier.verify_token("not.a.jwt")


@pytest.mark.asyncio
class TestBearerAuthentication:
    """Protected routes with the real verifier in front of them."""

    async def test_missing_header(self, anon_client):
        response = await anon_client.get("/api/v1/subscriptions/status")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        assert response.json()["detail"]["outcome"] == "session_invalid"

    async def test_expired_token(self, anon_client):
        token = make_token(
            secret=settings.auth_jwt_secret, expires_in=timedelta(minutes=-1)
        )

        response = await anon_client.get(
            "/api/v1/subscriptions/status",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["outcome"] == "session_invalid"

    async def test_valid_token(self, anon_client):
        token = make_token(secret=settings.auth_jwt_secret)

        response = await anon_client.get(
            "/api/v1/subscriptions/status",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert response.json()["tier_id"] == "free"


def test_secret_is_required(monkeypatch):
    monkeypatch.setattr(settings, "auth_jwt_secret", "")

    with pytest.raises(ValueError):
        JWTTokenVerifier()
