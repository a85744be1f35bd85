"""JWT helpers for the identity issued at registration.

Sign-in itself lives with the external identity provider; this service only
mints a token for a freshly registered owner and verifies bearer tokens.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from staffhub.core.config import get_settings

settings = get_settings()


def create_jwt(
    subject: str,
    tenant_id: str,
    role: str = "member",
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    )
    payload = {
        "sub": subject,
        "tid": tenant_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jose.JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
