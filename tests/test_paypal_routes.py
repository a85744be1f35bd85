"""PayPal webhook intake and subscription command endpoints."""

import json
import uuid

import pytest
from httpx import AsyncClient

from staffhub.core.security import create_jwt
from staffhub.services.paypal import PayPalError, ProviderResponse


async def _setup(client: AsyncClient, pending: str | None = "I-ROUTE1") -> dict:
    """Register a tenant and, optionally, start a checkout for ``pending``."""
    resp = await client.post("/v1/tenants", json={
        "company_name": "Route Co",
        "owner_email": "owner@routeco.com",
    })
    assert resp.status_code == 201
    data = resp.json()
    headers = {"Authorization": f"Bearer {data['access_token']}"}
    if pending:
        resp = await client.post(
            "/v1/billing/checkout",
            json={"subscriptionId": pending, "cycle": "monthly"},
            headers=headers,
        )
        assert resp.status_code == 200
    return {"headers": headers, "tenant": data["tenant"]}


def _webhook_body(event_type: str, resource: dict) -> str:
    return json.dumps({
        "id": f"WH-{uuid.uuid4().hex[:8]}",
        "event_type": event_type,
        "create_time": "2026-03-01T10:00:00Z",
        "resource": resource,
    })


# ── Webhook ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_webhook_activation_updates_tenant(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)

    resp = await client.post(
        "/v1/paypal/webhook",
        content=_webhook_body("BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-ROUTE1"}),
        headers={"Content-Type": "application/json", "PayPal-Transmission-Id": "tx-1"},
    )
    assert resp.status_code == 200
    assert resp.json()["received"] is True
    assert resp.json()["result"] == "applied"
    assert fake_paypal.commands("verify")[0][1]["paypal-transmission-id"] == "tx-1"

    tenant = (await client.get("/v1/tenants/me", headers=ctx["headers"])).json()
    assert tenant["subscription_status"] == "active"
    assert tenant["subscription_id"] == "I-ROUTE1"
    assert tenant["pending_subscription_id"] is None

    members = (await client.get("/v1/members", headers=ctx["headers"])).json()
    assert {m["subscription_status"] for m in members} == {"active"}


@pytest.mark.asyncio
async def test_webhook_payment_is_listed(client: AsyncClient):
    ctx = await _setup(client)
    sale = {
        "id": "SALE-ROUTE1",
        "billing_agreement_id": "I-ROUTE1",
        "state": "completed",
        "amount": {"total": "12.00", "currency": "EUR"},
    }
    body = _webhook_body("PAYMENT.SALE.COMPLETED", sale)

    for _ in range(2):
        resp = await client.post("/v1/paypal/webhook", content=body)
        assert resp.status_code == 200

    payments = (await client.get("/v1/billing/payments", headers=ctx["headers"])).json()
    assert len(payments) == 1
    assert payments[0]["transaction_id"] == "SALE-ROUTE1"
    assert payments[0]["amount"] == "12.00"


@pytest.mark.asyncio
async def test_webhook_bad_signature_rejected(client: AsyncClient, fake_paypal):
    fake_paypal.verified = False
    resp = await client.post(
        "/v1/paypal/webhook",
        content=_webhook_body("BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-ROUTE1"}),
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_webhook_invalid_json_rejected(client: AsyncClient):
    resp = await client.post("/v1/paypal/webhook", content=b"{not json")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_without_event_type_rejected(client: AsyncClient):
    resp = await client.post("/v1/paypal/webhook", content=json.dumps({"resource": {}}))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_webhook_verification_outage_is_retryable(client: AsyncClient, fake_paypal):
    fake_paypal.error = PayPalError("PayPal token request failed")
    resp = await client.post(
        "/v1/paypal/webhook",
        content=_webhook_body("BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-ROUTE1"}),
    )
    assert resp.status_code == 500


@pytest.mark.asyncio
async def test_webhook_unknown_subscription_acknowledged(client: AsyncClient):
    resp = await client.post(
        "/v1/paypal/webhook",
        content=_webhook_body("BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-NOBODY"}),
    )
    assert resp.status_code == 200
    assert resp.json()["result"] == "skipped"


# ── Sync / cancel ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_sync_update_quantity(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)
    resp = await client.post("/v1/paypal/sync", json={
        "subscriptionId": "I-ROUTE1",
        "action": "update_quantity",
        "quantity": 1200,
    }, headers=ctx["headers"])

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "action": "update_quantity"}
    assert fake_paypal.calls == [("revise_quantity", "I-ROUTE1", 1200)]


@pytest.mark.asyncio
async def test_sync_accepts_snake_case_fields(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)
    resp = await client.post("/v1/paypal/sync", json={
        "subscription_id": "I-ROUTE1",
        "action": "suspend",
        "reason": "Seasonal break",
    }, headers=ctx["headers"])

    assert resp.status_code == 200
    assert fake_paypal.calls == [("suspend", "I-ROUTE1", "Seasonal break")]


@pytest.mark.parametrize(
    "body",
    [
        {"action": "suspend"},
        {"subscriptionId": "I-ROUTE1", "action": "explode"},
        {"subscriptionId": "I-ROUTE1"},
        {"subscriptionId": "I-ROUTE1", "action": "update_quantity"},
    ],
)
@pytest.mark.asyncio
async def test_sync_validation(client: AsyncClient, fake_paypal, body):
    ctx = await _setup(client)
    resp = await client.post("/v1/paypal/sync", json=body, headers=ctx["headers"])
    assert resp.status_code == 400
    assert fake_paypal.calls == []


@pytest.mark.asyncio
async def test_sync_foreign_subscription_not_found(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)
    resp = await client.post("/v1/paypal/sync", json={
        "subscriptionId": "I-SOMEONE-ELSE",
        "action": "suspend",
    }, headers=ctx["headers"])
    assert resp.status_code == 404
    assert fake_paypal.calls == []


@pytest.mark.asyncio
async def test_sync_requires_billing_role(client: AsyncClient):
    ctx = await _setup(client)
    token = create_jwt(str(uuid.uuid4()), ctx["tenant"]["id"], role="member")
    resp = await client.post(
        "/v1/paypal/sync",
        json={"subscriptionId": "I-ROUTE1", "action": "suspend"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_sync_provider_failure_envelope(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)
    fake_paypal.responses["activate"] = ProviderResponse(
        ok=False, status=422, data={"name": "UNPROCESSABLE_ENTITY"}
    )
    resp = await client.post("/v1/paypal/sync", json={
        "subscriptionId": "I-ROUTE1",
        "action": "activate",
    }, headers=ctx["headers"])

    assert resp.status_code == 500
    assert resp.json() == {
        "success": False,
        "error": "PayPal failed",
        "detail": {"name": "UNPROCESSABLE_ENTITY"},
    }


@pytest.mark.asyncio
async def test_cancel_succeeds_on_no_content(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)
    resp = await client.post(
        "/v1/paypal/cancel",
        json={"subscriptionId": "I-ROUTE1"},
        headers=ctx["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert fake_paypal.calls == [("cancel", "I-ROUTE1", None)]

    # Local status waits for the cancellation webhook
    tenant = (await client.get("/v1/tenants/me", headers=ctx["headers"])).json()
    assert tenant["subscription_status"] == "none"


@pytest.mark.asyncio
async def test_cancel_failure_envelope(client: AsyncClient, fake_paypal):
    ctx = await _setup(client)
    fake_paypal.responses["cancel"] = ProviderResponse(ok=False, status=404, data={"name": "RESOURCE_NOT_FOUND"})
    resp = await client.post(
        "/v1/paypal/cancel",
        json={"subscriptionId": "I-ROUTE1"},
        headers=ctx["headers"],
    )
    assert resp.status_code == 500
    assert resp.json()["success"] is False
    assert resp.json()["detail"] == {"name": "RESOURCE_NOT_FOUND"}


@pytest.mark.asyncio
async def test_cancel_missing_subscription_id(client: AsyncClient):
    ctx = await _setup(client)
    resp = await client.post("/v1/paypal/cancel", json={}, headers=ctx["headers"])
    assert resp.status_code == 400


# ── Plans ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_plans_created_when_missing(client: AsyncClient, fake_paypal):
    resp = await client.post("/v1/paypal/plans")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["up_to_date"] is False
    assert data["created"] == ["P-1", "P-2"]


@pytest.mark.asyncio
async def test_plans_failure_envelope(client: AsyncClient, fake_paypal):
    fake_paypal.responses["create_plan"] = ProviderResponse(ok=False, status=400, data={"name": "INVALID_REQUEST"})
    resp = await client.post("/v1/paypal/plans")
    assert resp.status_code == 500
    assert resp.json()["error"] == "PayPal plan setup failed"
