"""PayPal REST gateway — subscription commands and webhook verification.

Usage::

    async with PayPalGateway() as paypal:
        result = await paypal.revise_quantity("I-ABC123", 1900)

One OAuth client-credentials token is fetched lazily per ``async with``
block and discarded when the block exits. Every command returns a
``ProviderResponse``; nothing is retried.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from staffhub.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# verify-webhook-signature field → inbound header (lower-cased)
SIGNATURE_HEADERS: dict[str, str] = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}

DEFAULT_REASONS = {
    "cancel": "Cancelled by customer",
    "suspend": "Downgraded to free tier",
    "activate": "Reactivated",
}


class PayPalError(Exception):
    """PayPal could not be reached or rejected our client credentials."""


@dataclass
class ProviderResponse:
    """Raw outcome of one PayPal call."""
    ok: bool
    status: int
    data: Any = None


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class PayPalGateway:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token: str | None = None

    async def __aenter__(self) -> PayPalGateway:
        self._client = httpx.AsyncClient(
            base_url=self.settings.paypal_base_url,
            timeout=self.settings.paypal_timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._token = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("PayPalGateway must be used as an async context manager")
        return self._client

    # ── Auth ──────────────────────────────────────────────────

    async def access_token(self) -> str:
        if self._token:
            return self._token

        client_id = self.settings.paypal_client_id
        secret = self.settings.paypal_client_secret
        if not client_id or not secret:
            raise PayPalError("PayPal credentials missing")

        try:
            resp = await self._http.post(
                "/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(client_id, secret),
            )
        except httpx.HTTPError as exc:
            raise PayPalError(f"PayPal token request failed: {exc}") from exc

        body = _parse_body(resp)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            detail = body.get("error_description") or body.get("error") if isinstance(body, dict) else body
            raise PayPalError(f"PayPal auth failed: {detail}")

        self._token = token
        return token

    async def request(
        self,
        method: str,
        path: str,
        body: dict | None = None,
        params: dict | None = None,
    ) -> ProviderResponse:
        token = await self.access_token()
        try:
            resp = await self._http.request(
                method,
                path,
                json=body,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise PayPalError(f"PayPal {method} {path} failed: {exc}") from exc

        result = ProviderResponse(ok=resp.is_success, status=resp.status_code, data=_parse_body(resp))
        if not result.ok:
            logger.warning("PayPal %s %s returned %d: %s", method, path, result.status, result.data)
        return result

    # ── Subscription commands ─────────────────────────────────

    async def revise_quantity(self, subscription_id: str, quantity: int) -> ProviderResponse:
        return await self.request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/revise",
            {"quantity": str(quantity)},
        )

    async def suspend(self, subscription_id: str, reason: str | None = None) -> ProviderResponse:
        return await self._lifecycle(subscription_id, "suspend", reason)

    async def activate(self, subscription_id: str, reason: str | None = None) -> ProviderResponse:
        return await self._lifecycle(subscription_id, "activate", reason)

    async def cancel(self, subscription_id: str, reason: str | None = None) -> ProviderResponse:
        return await self._lifecycle(subscription_id, "cancel", reason)

    async def _lifecycle(self, subscription_id: str, action: str, reason: str | None) -> ProviderResponse:
        return await self.request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/{action}",
            {"reason": reason or DEFAULT_REASONS[action]},
        )

    # ── Plans ─────────────────────────────────────────────────

    async def list_plans(self, product_id: str | None = None) -> ProviderResponse:
        params: dict = {"page_size": 20, "total_required": "true"}
        if product_id:
            params["product_id"] = product_id
        return await self.request("GET", "/v1/billing/plans", params=params)

    async def create_plan(self, payload: dict) -> ProviderResponse:
        return await self.request("POST", "/v1/billing/plans", payload)

    # ── Webhooks ──────────────────────────────────────────────

    async def verify_webhook_signature(
        self,
        headers: Mapping[str, str],
        raw_body: bytes | str,
    ) -> bool:
        """Ask PayPal whether an inbound webhook delivery is authentic.

        Raises ``ValueError`` if the body is not JSON.
        """
        webhook_id = self.settings.paypal_webhook_id
        if not webhook_id:
            logger.warning(
                "PAYPAL_WEBHOOK_ID is not set: accepting webhook WITHOUT signature verification"
            )
            return True

        lowered = {key.lower(): value for key, value in headers.items()}
        fields = {name: lowered.get(header) for name, header in SIGNATURE_HEADERS.items()}
        event = json.loads(raw_body)

        missing = sorted(name for name, value in fields.items() if not value)
        if missing:
            logger.warning("Webhook rejected: missing signature headers %s", missing)
            return False

        result = await self.request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            {**fields, "webhook_id": webhook_id, "webhook_event": event},
        )
        verified = (
            result.ok
            and isinstance(result.data, dict)
            and result.data.get("verification_status") == "SUCCESS"
        )
        if not verified:
            logger.warning("Webhook signature verification failed (status %d)", result.status)
        return verified
