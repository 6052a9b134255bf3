"""
Unit tests for payment method API routes.
"""

import pytest

from tests.fixtures import DECLINED_TOKEN, SCA_TOKEN


async def attach(client, token: str = "pm_card_visa"):
    intent = await client.post("/api/v1/payment-methods/setup-intent")
    assert intent.status_code == 200
    return await client.post(
        "/api/v1/payment-methods/confirm",
        json={
            "client_secret": intent.json()["client_secret"],
            "payment_method_token": token,
            "billing_name": "Ana Lima",
        },
    )


@pytest.mark.asyncio
class TestPaymentMethodRoutes:
    """Tests for payment method API routes."""

    async def test_list_without_customer(self, client):
        """Test GET /api/v1/payment-methods before any card was added."""
        response = await client.get("/api/v1/payment-methods")

        assert response.status_code == 200
        assert response.json() == []

    async def test_setup_intent(self, client):
        """Test POST /api/v1/payment-methods/setup-intent."""
        response = await client.post("/api/v1/payment-methods/setup-intent")

        assert response.status_code == 200
        data = response.json()
        assert data["setup_intent_id"].startswith("seti_")
        assert data["client_secret"].startswith(data["setup_intent_id"] + "_secret_")

    async def test_attach_first_card(self, client):
        """Test POST /api/v1/payment-methods/confirm."""
        response = await attach(client)

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "ok"
        assert data["payment_method"]["is_default"] is True

        listed = await client.get("/api/v1/payment-methods")
        assert [m["id"] for m in listed.json()] == [data["payment_method"]["id"]]

    async def test_attach_declined(self, client):
        response = await attach(client, DECLINED_TOKEN)

        assert response.status_code == 402
        assert response.json()["detail"]["decline_code"] == "generic_decline"

    async def test_attach_needs_authentication(self, client):
        response = await attach(client, SCA_TOKEN)

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "action_required"
        assert data["client_secret"]

    async def test_confirm_with_malformed_secret(self, client):
        response = await client.post(
            "/api/v1/payment-methods/confirm",
            json={"client_secret": "nope", "payment_method_token": "pm_card_visa"},
        )

        assert response.status_code == 400

    async def test_default_card_removal_flow(self, client):
        """Default can't be removed while another card exists."""
        card_a = (await attach(client, "pm_card_a")).json()["payment_method"]["id"]
        card_b = (await attach(client, "pm_card_b")).json()["payment_method"]["id"]

        blocked = await client.delete(f"/api/v1/payment-methods/{card_a}")
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["outcome"] == "conflict"

        switched = await client.post(f"/api/v1/payment-methods/{card_b}/default")
        assert switched.status_code == 200
        assert switched.json()["payment_method"]["is_default"] is True

        removed = await client.delete(f"/api/v1/payment-methods/{card_a}")
        assert removed.status_code == 200

        listed = (await client.get("/api/v1/payment-methods")).json()
        assert [(m["id"], m["is_default"]) for m in listed] == [(card_b, True)]

    async def test_remove_unknown_card(self, client):
        await attach(client)

        response = await client.delete("/api/v1/payment-methods/pm_missing")

        assert response.status_code == 404

    async def test_processor_down_on_list(self, client, sample_customer, fake_payment):
        fake_payment.unavailable("list_payment_methods", times=3)

        response = await client.get("/api/v1/payment-methods")

        assert response.status_code == 503
