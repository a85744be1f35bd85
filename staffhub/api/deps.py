"""FastAPI dependencies for identity, DB sessions and the PayPal gateway."""

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from staffhub.core.database import get_session
from staffhub.core.security import decode_jwt
from staffhub.models.member import MemberRole
from staffhub.services.paypal import PayPalGateway

bearer_scheme = HTTPBearer()


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("tenant_id", "member_id", "role")

    def __init__(self, tenant_id: uuid.UUID, member_id: uuid.UUID, role: str) -> None:
        self.tenant_id = tenant_id
        self.member_id = member_id
        self.role = role

    @property
    def can_manage_billing(self) -> bool:
        return self.role in (MemberRole.OWNER, MemberRole.ADMIN)


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> AuthContext:
    """Decode the bearer JWT into tenant_id + member_id + role."""
    try:
        payload = decode_jwt(credentials.credentials)
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired JWT",
        ) from exc

    try:
        return AuthContext(
            tenant_id=uuid.UUID(payload["tid"]),
            member_id=uuid.UUID(payload["sub"]),
            role=payload.get("role", MemberRole.MEMBER),
        )
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Malformed JWT payload",
        ) from exc


async def get_paypal_gateway() -> AsyncGenerator[PayPalGateway, None]:
    """One gateway (and at most one PayPal token) per request."""
    async with PayPalGateway() as gateway:
        yield gateway


def require_billing_admin(auth: AuthContext) -> None:
    """Raise 403 if the caller is not owner or admin."""
    if not auth.can_manage_billing:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only owners and admins can manage billing",
        )


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
PayPal = Annotated[PayPalGateway, Depends(get_paypal_gateway)]
