"""
Shared fixtures for the RARS test suite.

Every test gets a fresh SQLite database (aiosqlite) created from the ORM
metadata, an in-memory object store, and a seeded cast of principals.
Async code runs inside ``asyncio.run`` so no async pytest plugin is needed.

Usage:
    pytest backend/tests -v
"""

import os

# Must be set before rars modules are imported.
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SMTP_HOST", None)

import asyncio  # noqa: E402
import uuid  # noqa: E402
from dataclasses import dataclass  # noqa: E402
from typing import Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from rars import database  # noqa: E402
from rars.auth import hash_password  # noqa: E402
from rars.errors import UpstreamFailure  # noqa: E402
from rars.helpers.settings_reader import invalidate_cache  # noqa: E402
from rars.models.db.application import Application  # noqa: E402
from rars.models.db.document import Document  # noqa: E402
from rars.models.db.user import Profile, UserRole  # noqa: E402
from rars.models.enums import ApplicantType, DocumentType, Role  # noqa: E402
from rars.permissions import Principal  # noqa: E402
from rars.services.application_service import ApplicationService  # noqa: E402
from rars.services.decision_service import DecisionService  # noqa: E402
from rars.services.document_service import DocumentService  # noqa: E402
from rars.services.review_service import ReviewService  # noqa: E402

PASSWORD = "correct-horse-battery"
# Shared by every seeded profile.
PASSWORD_HASH = hash_password(PASSWORD)


# ============================================================================
# FAKE OBJECT STORE
# ============================================================================


class FakeStorage:
    """In-memory stand-in for :class:`rars.storage.DocumentStorage`."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_next_uploads = 0

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        if self.fail_next_uploads > 0:
            self.fail_next_uploads -= 1
            raise UpstreamFailure("Blob upload failed: simulated outage", key=key)
        self.blobs[key] = data
        return key

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)
        self.deleted.append(key)

    async def signed_url(self, key: str, ttl_seconds: int = 300) -> str:
        return f"https://blob.test/{key}?ttl={ttl_seconds}"


# ============================================================================
# SEEDING HELPERS
# ============================================================================


async def seed_user(
    db: AsyncSession,
    email: str,
    full_name: str,
    roles: set[Role],
    applicant_type: Optional[str] = None,
) -> Principal:
    profile = Profile(
        email=email,
        full_name=full_name,
        hashed_password=PASSWORD_HASH,
        applicant_type=applicant_type,
        is_active=True,
    )
    db.add(profile)
    await db.flush()
    for role in roles:
        db.add(UserRole(user_id=profile.id, role=role.value))
    await db.commit()
    return Principal(
        id=profile.id, email=email, full_name=full_name, roles=frozenset(roles)
    )


@dataclass
class World:
    """A seeded database plus shortcuts for walking the lifecycle."""

    factory: async_sessionmaker
    storage: FakeStorage
    applicant: Principal
    student: Principal
    outsider: Principal
    officer: Principal
    reviewer: Principal
    second_reviewer: Principal
    director: Principal
    admin: Principal

    def session(self) -> AsyncSession:
        return self.factory()

    async def draft(
        self, db: AsyncSession, owner: Optional[Principal] = None, **fields
    ) -> Application:
        values = {"title": "Study A", "institution": "National Health Institute"}
        values.update(fields)
        application = await ApplicationService.create(db, owner or self.applicant, values)
        await db.commit()
        return application

    async def upload(
        self,
        db: AsyncSession,
        application_id: uuid.UUID,
        document_type: DocumentType,
        principal: Optional[Principal] = None,
        data: bytes = b"%PDF-1.4 test document",
    ) -> Document:
        document = await DocumentService.upload(
            db,
            self.storage,
            principal or self.applicant,
            application_id,
            document_type,
            f"{document_type.value.lower()}.pdf",
            data,
            "application/pdf",
        )
        await db.commit()
        return document

    async def submitted(
        self, db: AsyncSession, owner: Optional[Principal] = None, **fields
    ) -> Application:
        owner = owner or self.applicant
        application = await self.draft(db, owner, **fields)
        for doc_type in (DocumentType.ETHICS_LETTER, DocumentType.PROPOSAL):
            await self.upload(db, application.id, doc_type, owner)
        return await ApplicationService.submit(db, owner, application.id)

    async def awaiting_decision(self, db: AsyncSession, **fields) -> Application:
        application = await self.submitted(db, **fields)
        review = await ReviewService.assign(
            db, self.officer, application.id, self.reviewer.id, "PROGRAM"
        )
        await ReviewService.submit(db, self.reviewer, review.id, "APPROVE", "Sound design")
        return await ApplicationService.get_or_404(db, application.id)

    async def approved(self, db: AsyncSession, **fields) -> Application:
        application = await self.awaiting_decision(db, **fields)
        await DecisionService.decide(
            db, self.storage, self.director, application.id, "APPROVED", "Proceed"
        )
        return await ApplicationService.get_or_404(db, application.id)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    invalidate_cache()
    yield
    invalidate_cache()


@pytest.fixture
def session_factory(tmp_path):
    """Fresh SQLite database with every table created."""
    factory = database.configure_database(
        f"sqlite+aiosqlite:///{tmp_path / 'rars.db'}"
    )
    asyncio.run(database.create_all())
    yield factory
    asyncio.run(database.engine.dispose())


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def world(session_factory, storage) -> World:
    async def build() -> World:
        async with session_factory() as db:
            return World(
                factory=session_factory,
                storage=storage,
                applicant=await seed_user(
                    db,
                    "amina@ngo.example",
                    "Amina Juma",
                    {Role.APPLICANT},
                    ApplicantType.NGO.value,
                ),
                student=await seed_user(
                    db,
                    "baraka@uni.example",
                    "Baraka Mushi",
                    {Role.APPLICANT},
                    ApplicantType.STUDENT.value,
                ),
                outsider=await seed_user(
                    db,
                    "other@ngo.example",
                    "Other Applicant",
                    {Role.APPLICANT},
                    ApplicantType.NGO.value,
                ),
                officer=await seed_user(
                    db, "officer@rars.example", "Admin Officer", {Role.ADMIN_OFFICER}
                ),
                reviewer=await seed_user(
                    db, "reviewer@rars.example", "Rehema Reviewer", {Role.REVIEWER}
                ),
                second_reviewer=await seed_user(
                    db, "data@rars.example", "Daudi Data-Owner", {Role.REVIEWER}
                ),
                director=await seed_user(
                    db,
                    "director@rars.example",
                    "Executive Director",
                    {Role.EXECUTIVE_DIRECTOR},
                ),
                admin=await seed_user(
                    db, "root@rars.example", "System Admin", {Role.SYSTEM_ADMIN}
                ),
            )

    return asyncio.run(build())

