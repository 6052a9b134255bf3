"""
Unit tests for checkout and plans API routes.
"""

import pytest


@pytest.mark.asyncio
class TestCheckoutRoutes:
    """Tests for hosted checkout routes."""

    async def test_create_checkout_session(self, client, fake_payment):
        """Test POST /api/v1/checkout-sessions."""
        response = await client.post(
            "/api/v1/checkout-sessions",
            json={
                "tier_id": "pro",
                "success_url": "http://localhost:3000/success",
                "cancel_url": "http://localhost:3000/cancel",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["redirect_url"].endswith(data["session_id"])
        session = fake_payment.checkout_sessions[data["session_id"]]
        assert session["success_url"] == "http://localhost:3000/success"

    async def test_unknown_tier(self, client):
        response = await client.post(
            "/api/v1/checkout-sessions", json={"tier_id": "gold"}
        )

        assert response.status_code == 400

    async def test_beta_cannot_be_bought(self, client):
        response = await client.post(
            "/api/v1/checkout-sessions", json={"tier_id": "beta"}
        )

        assert response.status_code == 400

    async def test_already_subscribed(self, client, sample_subscription):
        response = await client.post(
            "/api/v1/checkout-sessions", json={"tier_id": "studio"}
        )

        assert response.status_code == 409


@pytest.mark.asyncio
class TestPlansRoutes:
    async def test_plans_are_public(self, anon_client):
        """Test GET /api/v1/plans without credentials."""
        response = await anon_client.get("/api/v1/plans")

        assert response.status_code == 200
        data = response.json()
        assert data["catalog_version"]
        tiers = [plan["tier"] for plan in data["plans"]]
        assert tiers == ["free", "basic", "pro", "studio"]
        pro = data["plans"][2]
        assert pro["price_formatted"] == "€14.99"
        assert pro["limits"]["max_seats"] == 3
