"""Centralized subscription pricing.

Single source of truth for what a tenant owes:

    Free:       up to FREE_WORKER_LIMIT workers, 1 shop   → €0
    Standard:   above the free limit, below the threshold → €2/billable worker
                + €15/extra shop (1st shop free)
    Enterprise: ENTERPRISE_THRESHOLD+ workers             → €99/month flat

Yearly billing charges ten months for a twelve-month term.

PayPal bills ``unit price × quantity`` per cycle, so the subscription plans use a
unit price of one cent (ten cents on yearly plans) and the *quantity* carries
the monthly total in cents. Changing what a tenant pays is a quantity revision.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from staffhub.models.tenant import BillingCycle, PlanTier

PRICE_PER_WORKER = Decimal("2")
PRICE_PER_SHOP = Decimal("15")
FREE_WORKER_LIMIT = 4
FREE_SHOP_LIMIT = 1
PROMO_WORKER_LIMIT = 10
ENTERPRISE_THRESHOLD = 21
ENTERPRISE_PRICE_MONTHLY = Decimal("99")
YEARLY_MULTIPLIER = 10  # pay for 10 months, get 12
MONTHS_PER_YEAR = 12

CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class CostBreakdown:
    """What a given usage costs for one billing cycle.

    ``worker_cost`` / ``shop_cost`` / ``monthly_total`` are always per month;
    ``total`` is the amount charged per cycle.
    """
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


@dataclass(frozen=True)
class UsageCheck:
    allowed: bool
    requires_upgrade: bool = False
    new_tier: PlanTier | None = None
    message: str | None = None


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _clamp(count: int) -> int:
    return max(0, int(count))


def resolve_free_limit(free_worker_limit: int | None) -> int:
    return FREE_WORKER_LIMIT if free_worker_limit is None else _clamp(free_worker_limit)


def get_tier(worker_count: int, free_worker_limit: int | None = None) -> PlanTier:
    workers = _clamp(worker_count)
    if workers <= resolve_free_limit(free_worker_limit):
        return PlanTier.FREE
    if workers >= ENTERPRISE_THRESHOLD:
        return PlanTier.ENTERPRISE
    return PlanTier.STANDARD


def calculate_cost(
    worker_count: int,
    shop_count: int,
    cycle: BillingCycle | str = BillingCycle.MONTHLY,
    free_worker_limit: int | None = None,
) -> CostBreakdown:
    """Price the given usage. Negative counts are treated as zero."""
    cycle = BillingCycle(cycle)
    workers = _clamp(worker_count)
    shops = _clamp(shop_count)
    free_limit = resolve_free_limit(free_worker_limit)
    tier = get_tier(workers, free_limit)

    billable_workers = 0
    billable_shops = 0
    worker_cost = shop_cost = ZERO

    if tier == PlanTier.ENTERPRISE:
        monthly_total = ENTERPRISE_PRICE_MONTHLY
    elif tier == PlanTier.STANDARD:
        billable_workers = max(0, workers - free_limit)
        billable_shops = max(0, shops - FREE_SHOP_LIMIT)
        worker_cost = billable_workers * PRICE_PER_WORKER
        shop_cost = billable_shops * PRICE_PER_SHOP
        monthly_total = worker_cost + shop_cost
    else:
        monthly_total = ZERO

    if cycle == BillingCycle.YEARLY:
        total = monthly_total * YEARLY_MULTIPLIER
        monthly_equivalent = total / MONTHS_PER_YEAR
        savings = monthly_total * MONTHS_PER_YEAR - total
    else:
        total = monthly_total
        monthly_equivalent = monthly_total
        savings = ZERO

    return CostBreakdown(
        tier=tier,
        cycle=cycle,
        worker_count=workers,
        shop_count=shops,
        free_worker_limit=free_limit,
        billable_workers=billable_workers,
        billable_shops=billable_shops,
        worker_cost=money(worker_cost),
        shop_cost=money(shop_cost),
        monthly_total=money(monthly_total),
        total=money(total),
        monthly_equivalent=money(monthly_equivalent),
        savings=money(savings),
    )


def get_subscription_quantity(
    worker_count: int,
    shop_count: int,
    free_worker_limit: int | None = None,
) -> int:
    """PayPal quantity for the usage: the monthly total in cents.

    Monthly plans bill €0.01 per unit and yearly plans €0.10 per unit, so the
    same quantity is valid for either cycle.
    """
    cost = calculate_cost(worker_count, shop_count, BillingCycle.MONTHLY, free_worker_limit)
    return int(cost.monthly_total / CENT)


def billing_period(at: datetime) -> str:
    """Year-month bucket a payment belongs to."""
    return at.strftime("%Y-%m")


def promo_worker_limit(code: str | None, promo_codes: Mapping[str, int]) -> int | None:
    """Free worker limit granted by a registration promo code, if any."""
    if not code:
        return None
    return promo_codes.get(code.strip().upper())


def can_add_worker(
    active_workers: int,
    shop_count: int,
    free_worker_limit: int | None = None,
) -> UsageCheck:
    current_tier = get_tier(active_workers, free_worker_limit)
    new_tier = get_tier(active_workers + 1, free_worker_limit)
    if current_tier == new_tier:
        return UsageCheck(allowed=True, new_tier=new_tier)

    new_cost = calculate_cost(active_workers + 1, shop_count, BillingCycle.MONTHLY, free_worker_limit)
    if new_tier == PlanTier.ENTERPRISE:
        message = f"Adding this worker moves you to Enterprise at €{new_cost.total}/month flat."
    else:
        message = f"Adding this worker moves you to Standard at €{new_cost.total}/month."
    return UsageCheck(allowed=True, requires_upgrade=True, new_tier=new_tier, message=message)


def can_add_shop(
    shop_count: int,
    active_workers: int,
    free_worker_limit: int | None = None,
) -> UsageCheck:
    tier = get_tier(active_workers, free_worker_limit)
    if tier == PlanTier.FREE and shop_count >= FREE_SHOP_LIMIT:
        return UsageCheck(
            allowed=False,
            new_tier=tier,
            message=f"The free plan includes {FREE_SHOP_LIMIT} shop. Add workers to unlock Standard.",
        )
    if tier == PlanTier.STANDARD and shop_count >= FREE_SHOP_LIMIT:
        return UsageCheck(
            allowed=True,
            new_tier=tier,
            message=f"Additional shops cost €{money(PRICE_PER_SHOP)}/month each.",
        )
    return UsageCheck(allowed=True, new_tier=tier)
