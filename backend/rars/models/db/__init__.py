"""SQLAlchemy 2.0 ORM models for RARS.

Import all models here so Alembic's ``env.py`` can discover them via::

    from rars.models.db import Base  # noqa: F401
"""

from rars.models.db.base import Base, TimestampMixin  # noqa: F401

from rars.models.db.user import Profile, UserRole  # noqa: F401
from rars.models.db.application import (  # noqa: F401
    Application,
    ApplicationStatusHistory,
)
from rars.models.db.document import Document  # noqa: F401
from rars.models.db.review import Review  # noqa: F401
from rars.models.db.decision import ApprovalSignature, Decision  # noqa: F401
from rars.models.db.extension import Extension  # noqa: F401
from rars.models.db.repository import RepositoryItem  # noqa: F401
from rars.models.db.notification import Message, Notification  # noqa: F401
from rars.models.db.audit import AuditLog  # noqa: F401
from rars.models.db.intent import TransitionIntent  # noqa: F401
from rars.models.db.system_settings import SystemSetting  # noqa: F401
