"""SQLAlchemy model for end-date extension requests."""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rars.models.db.base import Base, TimestampMixin, UuidPrimaryKey

__all__ = ["Extension"]


class Extension(UuidPrimaryKey, TimestampMixin, Base):
    __tablename__ = "extensions"

    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    current_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    requested_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, default="PENDING", server_default="PENDING", nullable=False
    )
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=True
    )
    decision_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decision_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
