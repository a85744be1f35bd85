"""Member model — a user profile belonging to one tenant."""

import uuid
from enum import StrEnum

from sqlmodel import Field, SQLModel

from staffhub.models.base import TimestampMixin, new_uuid
from staffhub.models.tenant import SubscriptionStatus


class MemberRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Member(TimestampMixin, SQLModel, table=True):
    __tablename__ = "members"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    email: str = Field(max_length=320, nullable=False, index=True)
    display_name: str = Field(default="", max_length=255)
    role: MemberRole = Field(default=MemberRole.MEMBER)
    is_active: bool = Field(default=True)

    # Denormalized mirror of Tenant.subscription_status, kept in sync by fan-out
    subscription_status: SubscriptionStatus = Field(default=SubscriptionStatus.NONE)


# ── Pydantic schemas ─────────────────────────────────────────

class MemberCreate(SQLModel):
    email: str = Field(max_length=320)
    display_name: str = Field(default="", max_length=255)
    role: MemberRole = MemberRole.MEMBER


class MemberRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    display_name: str
    role: MemberRole
    is_active: bool
    subscription_status: SubscriptionStatus
