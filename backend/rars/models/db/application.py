"""Application and ApplicationStatusHistory ORM models.

``applications`` rows are never physically deleted; they only move forward
through the lifecycle.  Every status change appends a history row.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from rars.models.db.base import Base, TimestampMixin, UuidPrimaryKey, utcnow

__all__ = ["Application", "ApplicationStatusHistory"]


class Application(UuidPrimaryKey, TimestampMixin, Base):
    __tablename__ = "applications"

    reference_number: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    applicant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True
    )
    applicant_type: Mapped[str] = mapped_column(Text, nullable=False)

    # Proposal content
    title: Mapped[str] = mapped_column(Text, default="", nullable=False)
    abstract: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    objectives: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    methodology: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    institution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    program_area: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    keywords: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Data classification
    data_type: Mapped[str] = mapped_column(Text, default="AGGREGATED", nullable=False)
    sensitivity_level: Mapped[str] = mapped_column(
        Text, default="PUBLIC", nullable=False
    )
    ethics_approved: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="0", nullable=False
    )

    # Supervisor contact (student applicants)
    supervisor_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supervisor_email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(
        Text, default="DRAFT", server_default="DRAFT", nullable=False, index=True
    )

    # Derived deadlines, stamped on transition
    screening_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    turnaround_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class ApplicationStatusHistory(UuidPrimaryKey, Base):
    __tablename__ = "application_status_history"

    application_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    old_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    new_status: Mapped[str] = mapped_column(Text, nullable=False)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
