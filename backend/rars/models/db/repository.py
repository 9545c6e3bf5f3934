"""SQLAlchemy model for published repository items."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from rars.models.db.base import Base, UuidPrimaryKey, utcnow

__all__ = ["RepositoryItem"]


class RepositoryItem(UuidPrimaryKey, Base):
    __tablename__ = "repository_items"

    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("applications.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    abstract: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keywords: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    publication_year: Mapped[int] = mapped_column(Integer, nullable=False)
    institution: Mapped[str] = mapped_column(Text, nullable=False)
    program_area: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    final_document_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("documents.id"), nullable=True
    )
    public_visible: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="1", nullable=False
    )
    restricted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False
    )
    published_by: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False
    )
    published_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
