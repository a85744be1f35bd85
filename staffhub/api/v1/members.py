"""Tenant members — each carries a mirror of the tenant's subscription status."""

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from staffhub.api.deps import Auth, Session, require_billing_admin
from staffhub.models.member import Member, MemberCreate, MemberRead
from staffhub.services.entitlements import get_tenant, list_members

router = APIRouter(prefix="/members", tags=["members"])


@router.post("", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
async def add_member(
    body: MemberCreate,
    auth: Auth,
    session: Session,
) -> MemberRead:
    require_billing_admin(auth)

    tenant = await get_tenant(session, auth.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")

    # Email is unique within a tenant
    existing = await session.execute(
        select(Member).where(
            Member.tenant_id == auth.tenant_id,
            Member.email == body.email,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A member with this email already exists in this tenant",
        )

    member = Member(
        tenant_id=auth.tenant_id,
        email=body.email,
        display_name=body.display_name,
        role=body.role,
        subscription_status=tenant.subscription_status,
    )
    session.add(member)
    await session.commit()
    await session.refresh(member)
    return MemberRead.model_validate(member)


@router.get("", response_model=list[MemberRead])
async def get_members(
    auth: Auth,
    session: Session,
) -> list[MemberRead]:
    members = await list_members(session, auth.tenant_id)
    return [MemberRead.model_validate(m) for m in members]
