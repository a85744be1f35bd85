"""Subscription synchronizer — keeps PayPal and local entitlements in step.

Flow:
  1. Outbound: usage changes and explicit actions push commands to PayPal
     (quantity revision, suspend, activate, cancel, plan setup).
  2. Inbound: verified PayPal webhook events are mapped to a tenant status
     transition and fanned out to the tenant's members.

PayPal delivers events at least once and in no particular order. Each
transition writes absolute values stamped with the event's own time, so a
redelivery changes nothing; payments are keyed on the PayPal transaction id.
An event older than the last one applied to the tenant does not move its
status backwards.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from staffhub.core.pricing import (
    CENT,
    YEARLY_MULTIPLIER,
    CostBreakdown,
    billing_period,
    calculate_cost,
    get_subscription_quantity,
)
from staffhub.core.proration import Proration, calculate_proration
from staffhub.models.base import parse_timestamp, utcnow
from staffhub.models.tenant import BillingCycle, PlanTier, SubscriptionStatus, Tenant
from staffhub.services.entitlements import (
    find_tenant_by_subscription,
    record_payment,
    set_member_status,
    update_tenant,
)
from staffhub.services.paypal import PayPalError, PayPalGateway, ProviderResponse

logger = logging.getLogger(__name__)

PLAN_VERSION = 2
_VERSION_RE = re.compile(r"\bv(\d+)\b", re.IGNORECASE)


class WebhookEventType(StrEnum):
    SUBSCRIPTION_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
    PAYMENT_COMPLETED = "PAYMENT.SALE.COMPLETED"
    SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
    SUBSCRIPTION_SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
    PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"


class SyncAction(StrEnum):
    UPDATE_QUANTITY = "update_quantity"
    SUSPEND = "suspend"
    ACTIVATE = "activate"


@dataclass(frozen=True)
class Transition:
    status: SubscriptionStatus
    stamp_field: str


TRANSITIONS: dict[str, Transition] = {
    WebhookEventType.SUBSCRIPTION_ACTIVATED: Transition(SubscriptionStatus.ACTIVE, "subscription_activated_at"),
    WebhookEventType.PAYMENT_COMPLETED: Transition(SubscriptionStatus.ACTIVE, "last_payment_at"),
    WebhookEventType.SUBSCRIPTION_CANCELLED: Transition(SubscriptionStatus.CANCELLED, "subscription_cancelled_at"),
    WebhookEventType.SUBSCRIPTION_SUSPENDED: Transition(SubscriptionStatus.SUSPENDED, "subscription_suspended_at"),
    WebhookEventType.PAYMENT_FAILED: Transition(SubscriptionStatus.SUSPENDED, "last_payment_failed_at"),
}


class InvalidEvent(ValueError):
    """The webhook body is not a usable PayPal event."""


class SubscriptionSyncError(Exception):
    """A user-initiated PayPal command was refused."""

    def __init__(self, message: str, response: ProviderResponse | None = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def detail(self) -> Any:
        return self.response.data if self.response is not None else str(self)


@dataclass
class WebhookOutcome:
    result: str  # "applied", "skipped", "ignored", "stale"
    event_type: str
    subscription_id: str | None = None
    tenant_id: uuid.UUID | None = None
    status: SubscriptionStatus | None = None
    members_updated: int = 0
    payment_recorded: bool = False
    reason: str | None = None


@dataclass
class UsageSyncResult:
    plan: PlanTier
    cost: CostBreakdown
    quantity: int
    action: SyncAction | None = None
    provider_ok: bool | None = None
    detail: Any = None


@dataclass
class PlanEnsureResult:
    up_to_date: bool
    created: list[str] = field(default_factory=list)


# ── Inbound: webhook reconciliation ───────────────────────────

def event_time(event: dict) -> datetime:
    """When PayPal says the event happened; receipt time only as a last resort."""
    resource = event.get("resource") or {}
    for raw in (event.get("create_time"), resource.get("update_time"), resource.get("create_time")):
        parsed = parse_timestamp(raw)
        if parsed is not None:
            return parsed
    return utcnow()


def _subscription_id(event_type: str, resource: dict) -> str | None:
    # Sale events carry the sale id in ``id``; the subscription is the billing agreement
    if event_type == WebhookEventType.PAYMENT_COMPLETED:
        return resource.get("billing_agreement_id")
    return resource.get("id")


def _sale_amount(resource: dict, default_currency: str) -> tuple[Decimal, str]:
    amount = resource.get("amount") or {}
    try:
        total = Decimal(str(amount["total"]))
    except (KeyError, TypeError, InvalidOperation) as exc:
        raise InvalidEvent("Sale event has no valid amount.total") from exc
    return total, amount.get("currency") or default_currency


async def process_webhook_event(
    session: AsyncSession,
    event: dict,
    *,
    default_currency: str = "EUR",
) -> WebhookOutcome:
    """Apply one (already verified) PayPal event to local entitlement state."""
    event_type = event.get("event_type")
    if not event_type or not isinstance(event_type, str):
        raise InvalidEvent("Webhook event has no event_type")

    transition = TRANSITIONS.get(event_type)
    if transition is None:
        logger.info("Ignoring unhandled PayPal event %s", event_type)
        return WebhookOutcome(result="ignored", event_type=event_type)

    resource = event.get("resource")
    if not isinstance(resource, dict):
        raise InvalidEvent("Webhook event has no resource")

    subscription_id = _subscription_id(event_type, resource)
    if not subscription_id:
        logger.info("PayPal event %s carries no subscription id; discarding", event_type)
        return WebhookOutcome(result="skipped", event_type=event_type, reason="no subscription id")

    tenant = await find_tenant_by_subscription(session, subscription_id)
    if tenant is None:
        logger.info("No tenant for subscription %s (%s); discarding", subscription_id, event_type)
        return WebhookOutcome(
            result="skipped",
            event_type=event_type,
            subscription_id=subscription_id,
            reason="unknown subscription",
        )

    occurred_at = event_time(event)
    fields: dict[str, Any] = {
        "subscription_status": transition.status,
        transition.stamp_field: occurred_at,
        "last_event_at": occurred_at,
    }

    # Identity fields are not ordered: any event for the pending id confirms it
    identity: dict[str, Any] = {}
    if tenant.pending_subscription_id == subscription_id:
        identity = {"subscription_id": subscription_id, "pending_subscription_id": None}

    payment: dict[str, Any] = {}
    payment_recorded = False
    if event_type == WebhookEventType.PAYMENT_COMPLETED:
        transaction_id = resource.get("id")
        if not transaction_id:
            raise InvalidEvent("Sale event has no transaction id")
        amount, currency = _sale_amount(resource, default_currency)
        _, payment_recorded = await record_payment(
            session,
            tenant_id=tenant.id,
            subscription_id=subscription_id,
            transaction_id=transaction_id,
            amount=amount,
            currency=currency,
            period=billing_period(occurred_at),
            status=str(resource.get("state") or "completed").upper(),
        )
        if not payment_recorded:
            await session.refresh(tenant)
        payment = {
            "last_payment_at": occurred_at,
            "last_payment_amount": amount,
            "last_payment_currency": currency,
        }

    if tenant.last_event_at is not None and occurred_at < tenant.last_event_at:
        logger.info(
            "Stale %s for tenant %s (event %s < last applied %s); status unchanged",
            event_type, tenant.id, occurred_at, tenant.last_event_at,
        )
        late_fields = dict(identity)
        if payment and (tenant.last_payment_at is None or occurred_at > tenant.last_payment_at):
            late_fields.update(payment)
        await update_tenant(session, tenant, late_fields)
        return WebhookOutcome(
            result="stale",
            event_type=event_type,
            subscription_id=subscription_id,
            tenant_id=tenant.id,
            status=tenant.subscription_status,
            payment_recorded=payment_recorded,
        )

    fields.update(identity)
    fields.update(payment)
    await update_tenant(session, tenant, fields)
    members_updated = await set_member_status(session, tenant.id, transition.status)

    logger.info(
        "Applied %s to tenant %s → %s (%d members updated)",
        event_type, tenant.id, transition.status, members_updated,
    )
    return WebhookOutcome(
        result="applied",
        event_type=event_type,
        subscription_id=subscription_id,
        tenant_id=tenant.id,
        status=transition.status,
        members_updated=members_updated,
        payment_recorded=payment_recorded,
    )


# ── Outbound: usage & explicit actions ────────────────────────

def _advance_guard(tenant: Tenant, now: datetime) -> datetime:
    """Ordering guard after an explicit transition; never moves backwards."""
    if tenant.last_event_at is not None and tenant.last_event_at > now:
        return tenant.last_event_at
    return now


async def _commit_quantity(
    session: AsyncSession, tenant: Tenant, quantity: int, cost: CostBreakdown
) -> None:
    await update_tenant(session, tenant, {
        "subscription_quantity": quantity,
        "previous_monthly_cost": tenant.monthly_cost,
        "monthly_cost": cost.monthly_total,
    })


async def sync_usage(
    session: AsyncSession,
    gateway: PayPalGateway,
    tenant: Tenant,
    worker_count: int,
    shop_count: int,
) -> UsageSyncResult:
    """Record new usage and push the matching quantity to PayPal.

    Best effort: provider failures are logged and reported in the result,
    never raised, so the usage change itself always goes through.
    """
    cost = calculate_cost(worker_count, shop_count, BillingCycle.MONTHLY, tenant.free_worker_limit)
    quantity = get_subscription_quantity(worker_count, shop_count, tenant.free_worker_limit)
    await update_tenant(session, tenant, {
        "plan": cost.tier,
        "active_worker_count": cost.worker_count,
        "shop_count": cost.shop_count,
    })
    result = UsageSyncResult(plan=cost.tier, cost=cost, quantity=quantity)

    subscription_id = tenant.subscription_id
    if not subscription_id:
        return result

    try:
        if tenant.subscription_status == SubscriptionStatus.ACTIVE:
            if cost.tier == PlanTier.FREE:
                result.action = SyncAction.SUSPEND
                await downgrade_to_free(session, gateway, tenant)
                result.provider_ok = True
            elif quantity != tenant.subscription_quantity:
                result.action = SyncAction.UPDATE_QUANTITY
                resp = await gateway.revise_quantity(subscription_id, quantity)
                result.provider_ok = resp.ok
                if resp.ok:
                    await _commit_quantity(session, tenant, quantity, cost)
                else:
                    result.detail = resp.data
        elif tenant.subscription_status == SubscriptionStatus.SUSPENDED and cost.tier != PlanTier.FREE:
            result.action = SyncAction.ACTIVATE
            resp = await gateway.activate(subscription_id)
            result.provider_ok = resp.ok
            if not resp.ok:
                result.detail = resp.data
            elif quantity != tenant.subscription_quantity:
                revised = await gateway.revise_quantity(subscription_id, quantity)
                if revised.ok:
                    await _commit_quantity(session, tenant, quantity, cost)
                else:
                    result.provider_ok = False
                    result.detail = revised.data
    except SubscriptionSyncError as exc:
        logger.warning("Usage sync for tenant %s: PayPal refused %s: %s", tenant.id, result.action, exc.detail)
        result.provider_ok = False
        result.detail = exc.detail
    except PayPalError:
        logger.exception("Usage sync for tenant %s: PayPal unavailable", tenant.id)
        result.provider_ok = False

    return result


async def downgrade_to_free(
    session: AsyncSession,
    gateway: PayPalGateway,
    tenant: Tenant,
    reason: str | None = None,
) -> bool:
    """Suspend the tenant's subscription and mirror it locally.

    Returns True if an active subscription was suspended. Raises
    ``SubscriptionSyncError`` if PayPal refuses; local state is then untouched.
    """
    if not tenant.subscription_id or tenant.subscription_status != SubscriptionStatus.ACTIVE:
        await update_tenant(session, tenant, {"plan": PlanTier.FREE})
        return False

    resp = await gateway.suspend(tenant.subscription_id, reason)
    if not resp.ok:
        raise SubscriptionSyncError("PayPal suspend failed", resp)

    now = utcnow()
    await update_tenant(session, tenant, {
        "plan": PlanTier.FREE,
        "subscription_status": SubscriptionStatus.SUSPENDED,
        "subscription_suspended_at": now,
        "last_event_at": _advance_guard(tenant, now),
    })
    await set_member_status(session, tenant.id, SubscriptionStatus.SUSPENDED)
    logger.info("Tenant %s downgraded to free; subscription %s suspended", tenant.id, tenant.subscription_id)
    return True


async def begin_checkout(
    session: AsyncSession,
    tenant: Tenant,
    subscription_id: str,
    cycle: BillingCycle,
) -> Tenant:
    """Remember a checkout PayPal has not yet confirmed."""
    await update_tenant(session, tenant, {
        "pending_subscription_id": subscription_id,
        "subscription_cycle": cycle,
    })
    logger.info("Tenant %s started checkout for subscription %s", tenant.id, subscription_id)
    return tenant


async def confirm_checkout(
    session: AsyncSession,
    tenant: Tenant,
    subscription_id: str,
    cycle: BillingCycle,
    worker_count: int,
    shop_count: int,
) -> CostBreakdown:
    """Optimistically mark a subscription active once the buyer approved it.

    The activation webhook stays authoritative and will correct the record
    if this write is lost or wrong.
    """
    if subscription_id not in (tenant.pending_subscription_id, tenant.subscription_id):
        raise ValueError("Subscription was not started from this tenant's checkout")

    cost = calculate_cost(worker_count, shop_count, cycle, tenant.free_worker_limit)
    if cost.tier == PlanTier.FREE:
        raise ValueError("Usage is within the free plan; nothing to subscribe to")

    already_active = (
        tenant.subscription_id == subscription_id
        and tenant.subscription_status == SubscriptionStatus.ACTIVE
    )
    fields: dict[str, Any] = {
        "subscription_id": subscription_id,
        "pending_subscription_id": None,
        "subscription_status": SubscriptionStatus.ACTIVE,
        "subscription_cycle": cycle,
        "subscription_quantity": get_subscription_quantity(worker_count, shop_count, tenant.free_worker_limit),
        "plan": cost.tier,
        "active_worker_count": cost.worker_count,
        "shop_count": cost.shop_count,
        "monthly_cost": cost.monthly_total,
    }
    if not already_active:
        now = utcnow()
        fields["previous_monthly_cost"] = tenant.monthly_cost
        fields["subscription_activated_at"] = now
        fields["last_event_at"] = _advance_guard(tenant, now)

    await update_tenant(session, tenant, fields)
    await set_member_status(session, tenant.id, SubscriptionStatus.ACTIVE)
    return cost


async def run_sync_action(
    gateway: PayPalGateway,
    subscription_id: str,
    action: SyncAction,
    quantity: int | None = None,
    reason: str | None = None,
) -> ProviderResponse:
    if action == SyncAction.UPDATE_QUANTITY:
        if quantity is None:
            raise ValueError("quantity is required for update_quantity")
        return await gateway.revise_quantity(subscription_id, quantity)
    if action == SyncAction.SUSPEND:
        return await gateway.suspend(subscription_id, reason)
    return await gateway.activate(subscription_id, reason)


def quote_proration(
    tenant: Tenant,
    new_cost: CostBreakdown,
    now: datetime | None = None,
) -> Proration | None:
    """Proration against the tenant's committed cost, if it has an active subscription."""
    if tenant.subscription_status != SubscriptionStatus.ACTIVE or not tenant.monthly_cost:
        return None
    stamps = [t for t in (tenant.subscription_activated_at, tenant.last_payment_at) if t is not None]
    return calculate_proration(
        tenant.monthly_cost,
        new_cost,
        cycle_anchor=max(stamps) if stamps else None,
        cycle=tenant.subscription_cycle,
        now=now,
    )


# ── Provider plan setup ───────────────────────────────────────

def plan_version(plan: dict) -> int:
    """Best-effort version of a provider plan: explicit field, else ``vN`` in its name."""
    explicit = plan.get("plan_version", plan.get("planVersion"))
    if explicit is not None:
        try:
            return int(explicit)
        except (TypeError, ValueError):
            return 0
    match = _VERSION_RE.search(f"{plan.get('name', '')} {plan.get('description', '')}")
    return int(match.group(1)) if match else 0


def build_plan_payload(cycle: BillingCycle, product_id: str, currency: str) -> dict:
    yearly = cycle == BillingCycle.YEARLY
    unit_price = CENT * YEARLY_MULTIPLIER if yearly else CENT
    label = "Yearly" if yearly else "Monthly"
    return {
        "product_id": product_id,
        "name": f"StaffHub Standard {label} v{PLAN_VERSION}",
        "description": f"Quantity = monthly total in cents (plan v{PLAN_VERSION})",
        "status": "ACTIVE",
        "billing_cycles": [
            {
                "frequency": {"interval_unit": "YEAR" if yearly else "MONTH", "interval_count": 1},
                "tenure_type": "REGULAR",
                "sequence": 1,
                "total_cycles": 0,
                "pricing_scheme": {
                    "fixed_price": {"value": str(unit_price), "currency_code": currency},
                },
            },
        ],
        "payment_preferences": {
            "auto_bill_outstanding": True,
            "setup_fee": {"value": "0", "currency_code": currency},
            "payment_failure_threshold": 3,
        },
        "quantity_supported": True,
        "taxes": {"percentage": "0", "inclusive": False},
    }


async def ensure_plans(
    gateway: PayPalGateway,
    *,
    product_id: str,
    currency: str,
) -> PlanEnsureResult:
    """Create the standard plans unless a current-version plan already exists.

    Only ever adds plans. A failed listing is not fatal: we go on to create.
    """
    try:
        listing = await gateway.list_plans(product_id)
        plans = listing.data.get("plans") if listing.ok and isinstance(listing.data, dict) else None
        if plans and any(plan_version(p) >= PLAN_VERSION for p in plans if isinstance(p, dict)):
            return PlanEnsureResult(up_to_date=True)
    except PayPalError:
        logger.warning("Could not list PayPal plans; creating them", exc_info=True)

    created: list[str] = []
    for cycle in (BillingCycle.MONTHLY, BillingCycle.YEARLY):
        resp = await gateway.create_plan(build_plan_payload(cycle, product_id, currency))
        if not resp.ok:
            raise SubscriptionSyncError("PayPal plan creation failed", resp)
        plan_id = resp.data.get("id") if isinstance(resp.data, dict) else None
        created.append(plan_id or "")
        logger.info("Created PayPal %s plan %s (v%d)", cycle, plan_id, PLAN_VERSION)
    return PlanEnsureResult(up_to_date=False, created=created)
