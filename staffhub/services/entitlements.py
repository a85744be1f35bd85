"""Entitlement store — tenant, member and payment-record persistence.

Every write touches one row at a time and sets absolute values, so callers
can repeat any of them safely. Nothing here spans rows in one transaction.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from staffhub.models.base import utcnow
from staffhub.models.member import Member
from staffhub.models.payment import PaymentRecord
from staffhub.models.tenant import SubscriptionStatus, Tenant

logger = logging.getLogger(__name__)


async def get_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant | None:
    return await session.get(Tenant, tenant_id)


async def find_tenant_by_subscription(
    session: AsyncSession, subscription_id: str
) -> Tenant | None:
    """Resolve the owner of a PayPal subscription.

    Looks at the confirmed id first, then at a checkout still waiting for its
    activation event.
    """
    for column in (Tenant.subscription_id, Tenant.pending_subscription_id):
        result = await session.execute(select(Tenant).where(column == subscription_id))
        tenant = result.scalars().first()
        if tenant is not None:
            return tenant
    return None


async def update_tenant(
    session: AsyncSession, tenant: Tenant, fields: dict[str, Any]
) -> bool:
    """Write the given fields. Returns False (and writes nothing) if none changed."""
    changed = {name: value for name, value in fields.items() if getattr(tenant, name) != value}
    if not changed:
        return False

    for name, value in changed.items():
        setattr(tenant, name, value)
    tenant.updated_at = utcnow()
    session.add(tenant)
    await session.commit()
    return True


async def list_members(session: AsyncSession, tenant_id: uuid.UUID) -> list[Member]:
    stmt = (
        select(Member)
        .where(Member.tenant_id == tenant_id)
        .order_by(Member.created_at)  # type: ignore[arg-type]
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def set_member_status(
    session: AsyncSession, tenant_id: uuid.UUID, status: SubscriptionStatus
) -> int:
    """Fan a tenant's subscription status out to all its members.

    Returns how many members actually changed.
    """
    changed = 0
    for member in await list_members(session, tenant_id):
        if member.subscription_status == status:
            continue
        member.subscription_status = status
        member.updated_at = utcnow()
        session.add(member)
        changed += 1

    if changed:
        await session.commit()
    return changed


async def record_payment(
    session: AsyncSession,
    *,
    tenant_id: uuid.UUID,
    subscription_id: str,
    transaction_id: str,
    amount: Decimal,
    currency: str,
    period: str,
    status: str,
    method: str = "paypal_subscription",
) -> tuple[PaymentRecord, bool]:
    """Append a payment record once per PayPal transaction.

    Returns ``(record, created)``; a redelivered transaction returns the
    existing row with ``created=False``.
    """
    existing = await _payment_by_transaction(session, transaction_id)
    if existing is not None:
        return existing, False

    record = PaymentRecord(
        tenant_id=tenant_id,
        subscription_id=subscription_id,
        transaction_id=transaction_id,
        amount=amount,
        currency=currency,
        period=period,
        status=status,
        method=method,
    )
    session.add(record)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrent delivery of the same transaction won the insert
        await session.rollback()
        existing = await _payment_by_transaction(session, transaction_id)
        if existing is None:
            raise
        return existing, False

    logger.info("Recorded payment %s for tenant %s", transaction_id, tenant_id)
    return record, True


async def list_payments(
    session: AsyncSession, tenant_id: uuid.UUID, limit: int = 100
) -> list[PaymentRecord]:
    stmt = (
        select(PaymentRecord)
        .where(PaymentRecord.tenant_id == tenant_id)
        .order_by(PaymentRecord.created_at.desc())  # type: ignore[union-attr]
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def _payment_by_transaction(
    session: AsyncSession, transaction_id: str
) -> PaymentRecord | None:
    result = await session.execute(
        select(PaymentRecord).where(PaymentRecord.transaction_id == transaction_id)
    )
    return result.scalar_one_or_none()

