"""Shared base fields and time helpers for all models."""

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def to_naive_utc(value: datetime) -> datetime:
    """Normalise to the naive-UTC convention used for every stored timestamp."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(raw: str | None) -> datetime | None:
    """Parse an ISO-8601 provider timestamp (``2026-02-11T04:58:37Z``)."""
    if not raw:
        return None
    try:
        return to_naive_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        return None


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every mutable table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
