"""Billing endpoints — pricing quotes, usage changes, checkout and downgrade."""

import logging
from dataclasses import asdict
from decimal import Decimal

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from staffhub.api.deps import Auth, PayPal, Session, require_billing_admin
from staffhub.api.v1.paypal import ProviderEnvelope, provider_failure
from staffhub.core.pricing import CostBreakdown, calculate_cost, can_add_shop, can_add_worker
from staffhub.models.payment import PaymentRecordRead
from staffhub.models.tenant import BillingCycle, PlanTier, Tenant, TenantRead
from staffhub.services.entitlements import get_tenant, list_payments
from staffhub.services.paypal import PayPalError
from staffhub.services.subscription_sync import (
    SubscriptionSyncError,
    SyncAction,
    begin_checkout,
    confirm_checkout,
    downgrade_to_free,
    quote_proration,
    sync_usage,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ── Schemas ───────────────────────────────────────────────────

class CostQuote(BaseModel):
    tier: PlanTier
    cycle: BillingCycle
    worker_count: int
    shop_count: int
    free_worker_limit: int
    billable_workers: int
    billable_shops: int
    worker_cost: Decimal
    shop_cost: Decimal
    monthly_total: Decimal
    total: Decimal
    monthly_equivalent: Decimal
    savings: Decimal

    @classmethod
    def from_cost(cls, cost: CostBreakdown) -> "CostQuote":
        return cls(**asdict(cost))


class ProrationQuote(BaseModel):
    applicable: bool
    is_upgrade: bool | None = None
    prorated_difference: Decimal | None = None
    days_remaining: int | None = None
    days_in_cycle: int | None = None
    current_monthly_total: Decimal
    new_monthly_total: Decimal


class UsageCheckRead(BaseModel):
    allowed: bool
    requires_upgrade: bool
    new_tier: PlanTier | None
    message: str | None


class LimitsResponse(BaseModel):
    worker: UsageCheckRead
    shop: UsageCheckRead


class UsageUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    worker_count: int = Field(ge=0, alias="workerCount")
    shop_count: int = Field(ge=0, alias="shopCount")


class UsageSyncResponse(BaseModel):
    plan: PlanTier
    quantity: int
    cost: CostQuote
    action: SyncAction | None = None
    provider_ok: bool | None = None


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(min_length=1, max_length=64, alias="subscriptionId")
    cycle: BillingCycle = BillingCycle.MONTHLY


class CheckoutConfirmRequest(CheckoutRequest):
    worker_count: int = Field(ge=0, alias="workerCount")
    shop_count: int = Field(ge=0, alias="shopCount")


class CheckoutConfirmResponse(BaseModel):
    tenant: TenantRead
    cost: CostQuote


class DowngradeRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=128)


async def _tenant_or_404(session, tenant_id) -> Tenant:
    tenant = await get_tenant(session, tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


# ── Pricing ───────────────────────────────────────────────────

@router.get("/quote", response_model=CostQuote, summary="Price a given usage")
async def get_quote(
    auth: Auth,
    session: Session,
    worker_count: int = Query(ge=0),
    shop_count: int = Query(default=1, ge=0),
    cycle: BillingCycle = BillingCycle.MONTHLY,
) -> CostQuote:
    tenant = await _tenant_or_404(session, auth.tenant_id)
    cost = calculate_cost(worker_count, shop_count, cycle, tenant.free_worker_limit)
    return CostQuote.from_cost(cost)


@router.get("/proration", response_model=ProrationQuote, summary="Mid-cycle charge for a usage change")
async def get_proration(
    auth: Auth,
    session: Session,
    worker_count: int = Query(ge=0),
    shop_count: int = Query(default=1, ge=0),
) -> ProrationQuote:
    """Only tenants with an active paid subscription have anything to prorate."""
    tenant = await _tenant_or_404(session, auth.tenant_id)
    new_cost = calculate_cost(worker_count, shop_count, BillingCycle.MONTHLY, tenant.free_worker_limit)
    proration = quote_proration(tenant, new_cost)

    quote = ProrationQuote(
        applicable=proration is not None,
        current_monthly_total=tenant.monthly_cost,
        new_monthly_total=new_cost.monthly_total,
    )
    if proration is not None:
        quote.is_upgrade = proration.is_upgrade
        quote.prorated_difference = proration.prorated_difference
        quote.days_remaining = proration.days_remaining
        quote.days_in_cycle = proration.days_in_cycle
    return quote


@router.get("/limits", response_model=LimitsResponse, summary="What adding a worker or shop would do")
async def get_limits(auth: Auth, session: Session) -> LimitsResponse:
    tenant = await _tenant_or_404(session, auth.tenant_id)
    worker = can_add_worker(tenant.active_worker_count, tenant.shop_count, tenant.free_worker_limit)
    shop = can_add_shop(tenant.shop_count, tenant.active_worker_count, tenant.free_worker_limit)
    return LimitsResponse(
        worker=UsageCheckRead(**asdict(worker)),
        shop=UsageCheckRead(**asdict(shop)),
    )


# ── Usage & subscription lifecycle ────────────────────────────

@router.post("/usage", response_model=UsageSyncResponse, summary="Record new usage and sync PayPal")
async def update_usage(
    body: UsageUpdate,
    auth: Auth,
    session: Session,
    paypal: PayPal,
) -> UsageSyncResponse:
    """Always accepts the usage change; PayPal sync is best effort."""
    tenant = await _tenant_or_404(session, auth.tenant_id)
    result = await sync_usage(session, paypal, tenant, body.worker_count, body.shop_count)
    if result.provider_ok is False:
        logger.warning("Tenant %s usage saved but PayPal sync failed: %s", tenant.id, result.detail)
    return UsageSyncResponse(
        plan=result.plan,
        quantity=result.quantity,
        cost=CostQuote.from_cost(result.cost),
        action=result.action,
        provider_ok=result.provider_ok,
    )


@router.post("/checkout", response_model=TenantRead, summary="Remember a checkout awaiting approval")
async def start_checkout(
    body: CheckoutRequest,
    auth: Auth,
    session: Session,
) -> TenantRead:
    require_billing_admin(auth)
    tenant = await _tenant_or_404(session, auth.tenant_id)
    await begin_checkout(session, tenant, body.subscription_id, body.cycle)
    return TenantRead.model_validate(tenant)


@router.post(
    "/checkout/confirm",
    response_model=CheckoutConfirmResponse,
    summary="Activate a subscription the buyer approved",
)
async def confirm_subscription(
    body: CheckoutConfirmRequest,
    auth: Auth,
    session: Session,
) -> CheckoutConfirmResponse:
    require_billing_admin(auth)
    tenant = await _tenant_or_404(session, auth.tenant_id)
    try:
        cost = await confirm_checkout(
            session, tenant, body.subscription_id, body.cycle, body.worker_count, body.shop_count
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CheckoutConfirmResponse(tenant=TenantRead.model_validate(tenant), cost=CostQuote.from_cost(cost))


@router.post("/downgrade", response_model=ProviderEnvelope, summary="Suspend the subscription, back to free")
async def downgrade(
    auth: Auth,
    session: Session,
    paypal: PayPal,
    body: DowngradeRequest | None = None,
):
    require_billing_admin(auth)
    tenant = await _tenant_or_404(session, auth.tenant_id)
    try:
        await downgrade_to_free(session, paypal, tenant, body.reason if body else None)
    except SubscriptionSyncError as exc:
        return provider_failure("PayPal suspend failed", exc.detail)
    except PayPalError as exc:
        return provider_failure("PayPal unavailable", str(exc))
    return ProviderEnvelope(success=True, action=SyncAction.SUSPEND.value)


@router.get("/payments", response_model=list[PaymentRecordRead], summary="Recorded subscription payments")
async def get_payments(
    auth: Auth,
    session: Session,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[PaymentRecordRead]:
    records = await list_payments(session, auth.tenant_id, limit=limit)
    return [PaymentRecordRead.model_validate(r) for r in records]
