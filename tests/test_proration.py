"""Proration of a committed monthly cost change within the current cycle."""

from datetime import datetime, timezone
from decimal import Decimal

from staffhub.core.pricing import calculate_cost
from staffhub.core.proration import add_months, calculate_proration, current_cycle_bounds
from staffhub.models.tenant import BillingCycle


def test_upgrade_mid_month():
    result = calculate_proration(
        Decimal("10"),
        Decimal("41"),
        cycle_anchor=datetime(2026, 3, 1),
        now=datetime(2026, 3, 11),
    )
    assert result.is_upgrade is True
    assert result.days_in_cycle == 31
    assert result.days_remaining == 21
    assert result.prorated_difference == Decimal("21.00")


def test_downgrade_is_never_negative():
    result = calculate_proration(
        Decimal("41"),
        Decimal("10"),
        cycle_anchor=datetime(2026, 3, 1),
        now=datetime(2026, 3, 11),
    )
    assert result.is_upgrade is False
    assert result.prorated_difference == Decimal("0.00")


def test_equal_cost_is_not_an_upgrade():
    result = calculate_proration(Decimal("12"), Decimal("12"), now=datetime(2026, 3, 11))
    assert result.is_upgrade is False
    assert result.prorated_difference == Decimal("0.00")


def test_accepts_cost_breakdowns():
    result = calculate_proration(
        calculate_cost(5, 1),
        calculate_cost(10, 1),
        cycle_anchor=datetime(2026, 4, 1),
        now=datetime(2026, 4, 16),
    )
    # 30-day April, 15 days left, €10 difference
    assert result.days_in_cycle == 30
    assert result.days_remaining == 15
    assert result.prorated_difference == Decimal("5.00")


def test_cycle_rolls_forward_from_old_anchor():
    start, end = current_cycle_bounds(datetime(2026, 1, 31), BillingCycle.MONTHLY, datetime(2026, 3, 5))
    assert start == datetime(2026, 2, 28)
    assert end == datetime(2026, 3, 31)


def test_yearly_cycle():
    result = calculate_proration(
        Decimal("12"),
        Decimal("22"),
        cycle_anchor=datetime(2026, 1, 1),
        cycle=BillingCycle.YEARLY,
        now=datetime(2026, 7, 2),
    )
    assert result.days_in_cycle == 365
    assert result.days_remaining == 183
    assert result.prorated_difference == Decimal("5.01")


def test_aware_timestamps_are_normalised():
    result = calculate_proration(
        Decimal("10"),
        Decimal("41"),
        cycle_anchor=datetime(2026, 3, 1, tzinfo=timezone.utc),
        now=datetime(2026, 3, 11, tzinfo=timezone.utc),
    )
    assert result.days_remaining == 21


def test_no_anchor_means_a_fresh_cycle():
    result = calculate_proration(Decimal("0"), Decimal("31"), now=datetime(2026, 1, 10))
    assert result.days_remaining == result.days_in_cycle == 31
    assert result.prorated_difference == Decimal("31.00")


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
    assert add_months(datetime(2026, 11, 30), 3) == datetime(2027, 2, 28)
