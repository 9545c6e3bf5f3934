"""Re-export Base and provide common mixins for ORM models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from rars.database import Base

__all__ = ["Base", "TimestampMixin", "UuidPrimaryKey", "utcnow"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UuidPrimaryKey:
    """Mixin adding a client-generated UUID primary key (portable across backends)."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )


class TimestampMixin:
    """Mixin that adds ``created_at`` and ``updated_at`` columns.

    ``updated_at`` is also refreshed on every UPDATE via ``onupdate``.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )
