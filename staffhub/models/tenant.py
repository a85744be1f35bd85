"""Tenant model — a billed organization and its entitlement state."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlmodel import Field, SQLModel

from staffhub.models.base import TimestampMixin, new_uuid


class PlanTier(StrEnum):
    FREE = "free"
    STANDARD = "standard"
    ENTERPRISE = "enterprise"


class BillingCycle(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(StrEnum):
    NONE = "none"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class Tenant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=255, nullable=False)

    # Usage & tier
    plan: PlanTier = Field(default=PlanTier.FREE)
    free_worker_limit: int | None = Field(default=None)  # promo override
    promo_code: str | None = Field(default=None, max_length=50)
    active_worker_count: int = Field(default=0)
    shop_count: int = Field(default=0)

    # External subscription
    subscription_id: str | None = Field(default=None, max_length=64, index=True)
    pending_subscription_id: str | None = Field(default=None, max_length=64, index=True)
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.NONE)
    subscription_cycle: BillingCycle = Field(default=BillingCycle.MONTHLY)
    subscription_quantity: int | None = Field(default=None)
    monthly_cost: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)
    previous_monthly_cost: Decimal = Field(default=Decimal("0"), max_digits=10, decimal_places=2)

    # Lifecycle stamps (event time, not receipt time)
    subscription_activated_at: datetime | None = Field(default=None)
    subscription_cancelled_at: datetime | None = Field(default=None)
    subscription_suspended_at: datetime | None = Field(default=None)
    last_payment_at: datetime | None = Field(default=None)
    last_payment_amount: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)
    last_payment_currency: str | None = Field(default=None, max_length=3)
    last_payment_failed_at: datetime | None = Field(default=None)
    last_event_at: datetime | None = Field(default=None)

    @property
    def lifecycle_state(self) -> str:
        """``pending`` while checkout awaits its first activation event."""
        if self.pending_subscription_id and self.subscription_status in (
            SubscriptionStatus.NONE,
            SubscriptionStatus.CANCELLED,
        ):
            return "pending"
        return self.subscription_status.value


# ── Pydantic schemas ─────────────────────────────────────────

class TenantRead(SQLModel):
    id: uuid.UUID
    name: str
    plan: PlanTier
    free_worker_limit: int | None
    promo_code: str | None
    active_worker_count: int
    shop_count: int
    subscription_id: str | None
    pending_subscription_id: str | None
    subscription_status: SubscriptionStatus
    subscription_cycle: BillingCycle
    subscription_quantity: int | None
    monthly_cost: Decimal
    lifecycle_state: str
    subscription_activated_at: datetime | None
    subscription_cancelled_at: datetime | None
    subscription_suspended_at: datetime | None
    last_payment_at: datetime | None
    last_payment_amount: Decimal | None
    last_payment_failed_at: datetime | None
