"""Transition intent records.

An intent is persisted before a multi-step transition starts and marked
COMPLETED only once every step has run.  ``step`` records the index of the
last step that succeeded so a FAILED intent can be reconciled or resumed.
"""

import uuid
from typing import Any, Optional

from sqlalchemy import JSON, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rars.models.db.base import Base, TimestampMixin, UuidPrimaryKey

__all__ = ["TransitionIntent"]


class TransitionIntent(UuidPrimaryKey, TimestampMixin, Base):
    __tablename__ = "transition_intents"

    idempotency_key: Mapped[Optional[str]] = mapped_column(
        Text, unique=True, nullable=True
    )
    action: Mapped[str] = mapped_column(Text, nullable=False)
    # SHA-256 of the request payload; a reused key must carry the same one.
    fingerprint: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    entity_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    status: Mapped[str] = mapped_column(
        Text, default="PENDING", server_default="PENDING", nullable=False
    )
    step: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
