"""Audit trail writer.

Rows are added to the caller's session so they commit (or roll back)
together with the change they describe.
"""

import logging
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import Unauthorized
from rars.models.db.audit import AuditLog
from rars.permissions import Principal, can

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Enum)):
        return str(getattr(value, "value", value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def snapshot(obj: Any, fields: tuple[str, ...]) -> dict[str, Any]:
    """Capture *fields* of an ORM row as a JSON-safe dict."""
    return {name: _jsonable(getattr(obj, name, None)) for name in fields}


class AuditService:
    @staticmethod
    def record(
        db: AsyncSession,
        actor_id: Optional[uuid.UUID],
        entity_type: str,
        entity_id: Any,
        action: str,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        entry = AuditLog(
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            before_json=_jsonable(before) if before is not None else None,
            after_json=_jsonable(after) if after is not None else None,
        )
        db.add(entry)
        logger.debug("audit %s %s:%s by %s", action, entity_type, entity_id, actor_id)
        return entry

    @staticmethod
    async def for_entity(
        db: AsyncSession, entity_type: str, entity_id: Any
    ) -> list[AuditLog]:
        result = await db.execute(
            select(AuditLog)
            .where(
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == str(entity_id),
            )
            .order_by(AuditLog.created_at.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def search(
        db: AsyncSession,
        principal: Principal,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Audit rows for the admin trail, newest first.

        With both *entity_type* and *entity_id* the full history of that one
        entity is returned oldest first instead.
        """
        if not can(principal, "view_audit_logs"):
            raise Unauthorized("Only a system administrator can read the audit log")
        if entity_type and entity_id:
            return await AuditService.for_entity(db, entity_type, entity_id)

        query = select(AuditLog)
        if entity_type:
            query = query.where(AuditLog.entity_type == entity_type)
        if actor_id:
            query = query.where(AuditLog.actor_id == actor_id)
        result = await db.execute(
            query.order_by(AuditLog.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
