"""PayPal-facing endpoints: webhook intake, subscription commands, plan setup."""

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from staffhub.api.deps import Auth, AuthContext, PayPal, Session, require_billing_admin
from staffhub.core.config import get_settings
from staffhub.models.tenant import Tenant
from staffhub.services.entitlements import get_tenant
from staffhub.services.paypal import PayPalError
from staffhub.services.subscription_sync import (
    InvalidEvent,
    SubscriptionSyncError,
    SyncAction,
    ensure_plans,
    process_webhook_event,
    run_sync_action,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paypal", tags=["paypal"])

settings = get_settings()


# ── Schemas ───────────────────────────────────────────────────

class SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str | None = Field(default=None, alias="subscriptionId")
    action: str | None = None
    quantity: int | None = None
    reason: str | None = Field(default=None, max_length=128)


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str | None = Field(default=None, alias="subscriptionId")
    reason: str | None = Field(default=None, max_length=128)


class ProviderEnvelope(BaseModel):
    success: bool
    action: str | None = None


class WebhookAck(BaseModel):
    received: bool = True
    result: str
    event_type: str
    reason: str | None = None


class PlanEnsureResponse(BaseModel):
    ok: bool
    up_to_date: bool
    created: list[str]
    message: str


def provider_failure(error: str, detail: Any) -> JSONResponse:
    """Failure envelope carrying PayPal's raw payload for operators."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": error, "detail": jsonable_encoder(detail)},
    )


async def _owned_subscription(session, auth: AuthContext, subscription_id: str) -> Tenant:
    """The caller's tenant, provided it owns ``subscription_id``."""
    tenant = await get_tenant(session, auth.tenant_id)
    if tenant is None or subscription_id not in (
        tenant.subscription_id,
        tenant.pending_subscription_id,
    ):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return tenant


# ── Routes ────────────────────────────────────────────────────

@router.post("/webhook", response_model=WebhookAck)
async def paypal_webhook(
    request: Request,
    session: Session,
    paypal: PayPal,
) -> WebhookAck:
    """Receive a PayPal event, verify it, and reconcile the owning tenant.

    Business no-ops (unknown subscription, unhandled event type) are still
    acknowledged with 200 so PayPal stops redelivering them.
    """
    raw_body = await request.body()

    try:
        verified = await paypal.verify_webhook_signature(request.headers, raw_body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON") from exc
    except PayPalError as exc:
        logger.error("Webhook signature check unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Signature verification unavailable",
        ) from exc

    if not verified:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = json.loads(raw_body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON") from exc
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    try:
        outcome = await process_webhook_event(session, event, default_currency=settings.billing_currency)
    except InvalidEvent as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return WebhookAck(result=outcome.result, event_type=outcome.event_type, reason=outcome.reason)


@router.post("/sync", response_model=ProviderEnvelope)
async def sync_subscription(
    body: SyncRequest,
    auth: Auth,
    session: Session,
    paypal: PayPal,
):
    """Push a quantity revision, suspension or reactivation to PayPal."""
    if not body.subscription_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing subscriptionId")
    try:
        action = SyncAction(body.action)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown action: {body.action}",
        ) from exc
    if action == SyncAction.UPDATE_QUANTITY and (body.quantity is None or body.quantity <= 0):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing quantity")

    require_billing_admin(auth)
    await _owned_subscription(session, auth, body.subscription_id)

    try:
        result = await run_sync_action(paypal, body.subscription_id, action, body.quantity, body.reason)
    except PayPalError as exc:
        return provider_failure("PayPal unavailable", str(exc))

    if not result.ok:
        return provider_failure("PayPal failed", result.data)
    return ProviderEnvelope(success=True, action=action.value)


@router.post("/cancel", response_model=ProviderEnvelope)
async def cancel_subscription(
    body: CancelRequest,
    auth: Auth,
    session: Session,
    paypal: PayPal,
):
    """Cancel at PayPal; the cancellation webhook updates local state."""
    if not body.subscription_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing subscriptionId")

    require_billing_admin(auth)
    await _owned_subscription(session, auth, body.subscription_id)

    try:
        result = await paypal.cancel(body.subscription_id, body.reason)
    except PayPalError as exc:
        return provider_failure("PayPal unavailable", str(exc))

    # PayPal answers 204 No Content on success
    if not result.ok:
        return provider_failure("PayPal cancel failed", result.data)
    return ProviderEnvelope(success=True, action="cancel")


@router.post("/plans", response_model=PlanEnsureResponse)
async def ensure_paypal_plans(paypal: PayPal):
    """Make sure current-version billing plans exist. Safe to call repeatedly."""
    try:
        result = await ensure_plans(
            paypal,
            product_id=settings.paypal_product_id,
            currency=settings.billing_currency,
        )
    except SubscriptionSyncError as exc:
        return provider_failure("PayPal plan setup failed", exc.detail)
    except PayPalError as exc:
        return provider_failure("PayPal unavailable", str(exc))

    return PlanEnsureResponse(
        ok=True,
        up_to_date=result.up_to_date,
        created=result.created,
        message="PayPal plans ensured",
    )
