"""Mid-cycle proration for a change in committed monthly cost.

The result is shown at checkout only; the new amount is billed from the next
cycle through the revised quantity.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from staffhub.models.base import to_naive_utc, utcnow
from staffhub.models.tenant import BillingCycle

CENT = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class Proration:
    is_upgrade: bool
    prorated_difference: Decimal
    days_remaining: int
    days_in_cycle: int


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's end."""
    index = value.month - 1 + months
    year = value.year + index // 12
    month = index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _cycle_months(cycle: BillingCycle) -> int:
    return 12 if cycle == BillingCycle.YEARLY else 1


def current_cycle_bounds(
    anchor: datetime,
    cycle: BillingCycle | str,
    now: datetime,
) -> tuple[datetime, datetime]:
    """Start and end of the billing cycle containing ``now``.

    Cycles are counted from ``anchor`` (activation or last renewal), so a
    31st-of-the-month anchor keeps landing on month ends.
    """
    step = _cycle_months(BillingCycle(cycle))
    n = 1
    end = add_months(anchor, step)
    while end <= now:
        n += 1
        end = add_months(anchor, step * n)
    return add_months(anchor, step * (n - 1)), end


def _monthly_total(cost: Any) -> Decimal:
    value = getattr(cost, "monthly_total", cost)
    return Decimal(str(value))


def calculate_proration(
    previous_cost: Any,
    new_cost: Any,
    *,
    cycle_anchor: datetime | None = None,
    cycle: BillingCycle | str = BillingCycle.MONTHLY,
    now: datetime | None = None,
) -> Proration:
    """Prorated charge for moving from ``previous_cost`` to ``new_cost``.

    Either argument may be a ``CostBreakdown`` or a plain monthly amount.
    Downgrades never produce a negative difference.
    """
    now = to_naive_utc(now) if now else utcnow()
    anchor = to_naive_utc(cycle_anchor) if cycle_anchor else now
    start, end = current_cycle_bounds(anchor, cycle, now)

    days_in_cycle = max(1, (end.date() - start.date()).days)
    days_remaining = min(days_in_cycle, max(0, (end.date() - now.date()).days))

    previous = _monthly_total(previous_cost)
    new = _monthly_total(new_cost)
    is_upgrade = new > previous

    difference = ZERO
    if is_upgrade:
        difference = (new - previous) * Decimal(days_remaining) / Decimal(days_in_cycle)

    return Proration(
        is_upgrade=is_upgrade,
        prorated_difference=max(ZERO, difference).quantize(CENT, rounding=ROUND_HALF_UP),
        days_remaining=days_remaining,
        days_in_cycle=days_in_cycle,
    )
