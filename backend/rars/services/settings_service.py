"""SYSTEM_ADMIN management of the runtime ``system_settings``.

Only keys the services actually read can be written, and each value is
checked before it is stored.  A write commits and then drops the cached
value, so the next transition sees it immediately.
"""

import logging
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import Unauthorized, ValidationFailure
from rars.helpers.settings_reader import invalidate_cache
from rars.models.db.base import utcnow
from rars.models.db.system_settings import SystemSetting
from rars.permissions import Principal, can
from rars.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def _day_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationFailure("Expected a whole number of days (1 or more)")
    return value


def _flag(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationFailure("Expected true or false")
    return value


# key -> (validator, description, default)
SETTINGS: dict[str, tuple[Callable[[Any], Any], str, Any]] = {
    "screening_days": (_day_count, "Days allowed for screening a submission", 14),
    "turnaround_days": (_day_count, "Days allowed for the review turnaround", 30),
    "enable_email_notifications": (
        _flag,
        "Send e-mail alongside in-app notifications",
        True,
    ),
}


class SettingsService:
    @staticmethod
    def _require_admin(principal: Principal) -> None:
        if not can(principal, "manage_settings"):
            raise Unauthorized("Only a system administrator can manage settings")

    @staticmethod
    async def list_settings(
        db: AsyncSession, principal: Principal
    ) -> list[dict[str, Any]]:
        """Every known setting with its stored value, or the default when unset."""
        SettingsService._require_admin(principal)
        rows = await db.execute(
            select(SystemSetting).where(SystemSetting.key.in_(list(SETTINGS)))
        )
        stored = {row.key: row for row in rows.scalars()}
        listing = []
        for key, (_, description, default) in SETTINGS.items():
            row = stored.get(key)
            listing.append(
                {
                    "key": key,
                    "value": row.value if row else default,
                    "description": (row.description if row else None) or description,
                    "is_default": row is None,
                    "updated_at": row.updated_at if row else None,
                }
            )
        return listing

    @staticmethod
    async def update_setting(
        db: AsyncSession,
        principal: Principal,
        key: str,
        value: Any,
        description: Optional[str] = None,
    ) -> SystemSetting:
        """Validate and upsert *key*, then invalidate its cached value.

        Raises:
            ValidationFailure: Unknown key or a value of the wrong shape.
        """
        SettingsService._require_admin(principal)
        if key not in SETTINGS:
            raise ValidationFailure(f"Unknown setting '{key}'")
        validate, default_description, _ = SETTINGS[key]
        value = validate(value)

        setting = await db.get(SystemSetting, key)
        before = {"value": setting.value} if setting else None
        if setting is None:
            setting = SystemSetting(key=key, description=default_description)
            db.add(setting)
        setting.value = value
        if description is not None:
            setting.description = description
        setting.updated_by = principal.id
        setting.updated_at = utcnow()
        AuditService.record(
            db,
            principal.id,
            "system_setting",
            key,
            "update_setting",
            before=before,
            after={"value": value},
        )
        await db.commit()
        invalidate_cache(key)
        logger.info("Admin %s set %s=%r", principal.email, key, value)
        return setting
