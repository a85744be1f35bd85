"""PaymentRecord model — append-only log of captured subscription charges."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel

from staffhub.models.base import new_uuid, utcnow


class PaymentRecord(SQLModel, table=True):
    __tablename__ = "payment_records"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(foreign_key="tenants.id", nullable=False, index=True)
    subscription_id: str = Field(max_length=64, nullable=False, index=True)
    transaction_id: str = Field(max_length=64, nullable=False, unique=True)  # idempotency key
    amount: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(max_length=3)
    period: str = Field(max_length=7)  # "YYYY-MM"
    status: str = Field(max_length=30)
    method: str = Field(default="paypal_subscription", max_length=50)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


# ── Pydantic schemas ─────────────────────────────────────────

class PaymentRecordRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    subscription_id: str
    transaction_id: str
    amount: Decimal
    currency: str
    period: str
    status: str
    method: str
    created_at: datetime
