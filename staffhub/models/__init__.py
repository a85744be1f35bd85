"""Import all models so SQLModel.metadata picks them up."""

from staffhub.models.member import Member, MemberCreate, MemberRead, MemberRole
from staffhub.models.payment import PaymentRecord, PaymentRecordRead
from staffhub.models.tenant import (
    BillingCycle,
    PlanTier,
    SubscriptionStatus,
    Tenant,
    TenantRead,
)

__all__ = [
    "BillingCycle",
    "Member",
    "MemberCreate",
    "MemberRead",
    "MemberRole",
    "PaymentRecord",
    "PaymentRecordRead",
    "PlanTier",
    "SubscriptionStatus",
    "Tenant",
    "TenantRead",
]
