"""Cached reader for the ``system_settings`` table.

Admins tune review deadlines and the e-mail switch at runtime; services read
them through :func:`get_setting` / :func:`get_day_count`.  Values (and misses)
are cached per key for 60 seconds, so an admin change is picked up within a
minute without a query on every transition.

Usage::

    from rars.helpers.settings_reader import get_day_count

    days = await get_day_count(db, "screening_days", 14)
"""

import json
import logging
import time
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.models.db.system_settings import SystemSetting

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60.0

# key -> (value, monotonic time it was read); _ABSENT marks a cached miss.
_cache: dict[str, tuple[Any, float]] = {}
_ABSENT = object()


def _decode(raw: Any) -> Any:
    # Some drivers hand back the JSON column as a raw string.
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return raw


def _fresh(key: str, now: float) -> Any:
    entry = _cache.get(key)
    if entry is None or now - entry[1] >= CACHE_TTL_SECONDS:
        return None
    return entry


async def get_setting(db: AsyncSession, key: str, default: Any = None) -> Any:
    """Return the stored value for *key*, or *default* when unset or unreadable."""
    now = time.monotonic()
    entry = _fresh(key, now)
    if entry is not None:
        value = entry[0]
        return default if value is _ABSENT else value

    try:
        row = (
            await db.execute(select(SystemSetting.value).where(SystemSetting.key == key))
        ).first()
    except SQLAlchemyError as exc:
        # Not cached: the next call retries the read.
        logger.warning("system setting %r could not be read: %s", key, exc)
        return default

    value = _ABSENT if row is None else _decode(row[0])
    _cache[key] = (value, now)
    return default if value is _ABSENT else value


async def get_day_count(db: AsyncSession, key: str, default: int) -> int:
    """A positive whole number of days; malformed stored values fall back to *default*."""
    value = await get_setting(db, key, default)
    try:
        days = int(value)
    except (TypeError, ValueError):
        logger.warning("system setting %r=%r is not a day count", key, value)
        return default
    return days if days > 0 else default


def invalidate_cache(key: Optional[str] = None) -> None:
    """Forget one cached *key*, or every key."""
    if key:
        _cache.pop(key, None)
    else:
        _cache.clear()
