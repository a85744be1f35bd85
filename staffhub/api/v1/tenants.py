"""Company registration and tenant entitlement view."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, EmailStr, Field

from staffhub.api.deps import Auth, Session
from staffhub.core.config import promo_code_table
from staffhub.core.pricing import promo_worker_limit
from staffhub.core.security import create_jwt
from staffhub.models.member import Member, MemberRead, MemberRole
from staffhub.models.tenant import Tenant, TenantRead
from staffhub.services.entitlements import get_tenant

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ── Registration request / response schemas ──────────────────

class TenantRegisterRequest(BaseModel):
    """A new company and its owner, as already signed up with the identity provider."""
    company_name: str = Field(min_length=1, max_length=255)
    owner_email: EmailStr
    owner_display_name: str = Field(default="", max_length=255)
    promo_code: str | None = Field(default=None, max_length=50)


class TenantRegisterResponse(BaseModel):
    tenant: TenantRead
    owner: MemberRead
    access_token: str


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=TenantRegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a company (tenant) and its owner",
)
async def register_tenant(
    body: TenantRegisterRequest,
    session: Session,
) -> TenantRegisterResponse:
    """Every company starts on the free plan with no subscription.

    A recognised promo code raises the free worker allowance.
    """
    free_limit = promo_worker_limit(body.promo_code, promo_code_table())

    tenant = Tenant(
        name=body.company_name,
        free_worker_limit=free_limit,
        promo_code=body.promo_code.strip().upper() if free_limit is not None else None,
    )
    session.add(tenant)
    await session.flush()  # populate tenant.id

    owner = Member(
        tenant_id=tenant.id,
        email=body.owner_email,
        display_name=body.owner_display_name,
        role=MemberRole.OWNER,
        subscription_status=tenant.subscription_status,
    )
    session.add(owner)
    await session.commit()
    await session.refresh(tenant)
    await session.refresh(owner)

    token = create_jwt(str(owner.id), str(tenant.id), role=owner.role.value)
    return TenantRegisterResponse(
        tenant=TenantRead.model_validate(tenant),
        owner=MemberRead.model_validate(owner),
        access_token=token,
    )


@router.get(
    "/me",
    response_model=TenantRead,
    summary="Get current tenant entitlement",
)
async def get_current_tenant(
    auth: Auth,
    session: Session,
) -> TenantRead:
    tenant = await get_tenant(session, auth.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return TenantRead.model_validate(tenant)
