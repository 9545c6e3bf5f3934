"""Publication of completed research to the public repository."""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import NotFound, ValidationFailure
from rars.lifecycle import LifecycleAction, Transition
from rars.models.db.application import Application
from rars.models.db.base import utcnow
from rars.models.db.repository import RepositoryItem
from rars.models.enums import DataType, DocumentType, SensitivityLevel
from rars.permissions import Principal
from rars.services.application_service import ApplicationService, TransitionRequest
from rars.services.audit_service import AuditService
from rars.services.document_service import DocumentService
from rars.services.transition_service import TransitionContext

logger = logging.getLogger(__name__)


def split_keywords(keywords: Any) -> list[str]:
    """Accept a comma separated string or a list; drop blanks and duplicates."""
    if keywords is None:
        return []
    items = keywords.split(",") if isinstance(keywords, str) else list(keywords)
    seen: list[str] = []
    for item in items:
        word = str(item).strip()
        if word and word.lower() not in {s.lower() for s in seen}:
            seen.append(word)
    return seen


def default_restricted(application: Application) -> bool:
    return (
        application.sensitivity_level == SensitivityLevel.RESTRICTED.value
        or application.data_type == DataType.PATIENT_LEVEL.value
    )


class RepositoryService:
    @staticmethod
    async def publish(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        publication_year: Optional[int],
        keywords: Any,
        institution: Optional[str],
        program_area: Optional[str] = None,
        restricted: Optional[bool] = None,
        abstract: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> RepositoryItem:
        """FINAL_SUBMISSION_PENDING/COMPLETED -> PUBLISHED with a repository item.

        Raises:
            ValidationFailure: Year, keywords or institution missing or invalid.
        """
        words = split_keywords(keywords)
        institution = (institution or "").strip()

        async def guard(application: Application) -> None:
            current_year = utcnow().year
            if publication_year is None or not (
                1900 <= int(publication_year) <= current_year + 1
            ):
                raise ValidationFailure("A valid publication year is required")
            if not words:
                raise ValidationFailure("At least one keyword is required")
            if not (institution or application.institution):
                raise ValidationFailure("Institution is required for publication")

        async def work(
            application: Application, transition: Transition, ctx: TransitionContext
        ) -> dict:
            final_paper = await DocumentService.latest(
                db, application.id, DocumentType.FINAL_PAPER
            )
            item = RepositoryItem(
                application_id=application.id,
                title=application.title,
                abstract=abstract if abstract is not None else application.abstract,
                keywords=words,
                publication_year=int(publication_year),
                institution=institution or application.institution,
                program_area=program_area or application.program_area,
                final_document_id=final_paper.id if final_paper else None,
                public_visible=True,
                restricted=(
                    default_restricted(application) if restricted is None else restricted
                ),
                published_by=principal.id,
            )
            db.add(item)
            await db.flush()
            AuditService.record(
                db,
                principal.id,
                "repository_item",
                item.id,
                "publish",
                after={"application_id": application.id, "restricted": item.restricted},
            )
            ctx.advance("repository item created")
            return {"repository_item_id": str(item.id)}

        _, result = await ApplicationService.transition(
            db,
            principal,
            application_id,
            TransitionRequest(
                action=LifecycleAction.PUBLISH,
                permission="publish_to_repository",
                idempotency_key=idempotency_key,
                payload={
                    "publication_year": publication_year,
                    "keywords": words,
                    "institution": institution,
                    "program_area": program_area,
                    "restricted": restricted,
                    "abstract": abstract,
                },
                guard=guard,
                work=work,
            ),
        )
        item = await db.get(RepositoryItem, uuid.UUID(result["repository_item_id"]))
        logger.info("Published application %s as item %s", application_id, item.id)
        return item

    @staticmethod
    async def list_public(
        db: AsyncSession, query: Optional[str] = None, year: Optional[int] = None
    ) -> list[RepositoryItem]:
        stmt = select(RepositoryItem).where(RepositoryItem.public_visible.is_(True))
        if year:
            stmt = stmt.where(RepositoryItem.publication_year == year)
        if query:
            pattern = f"%{query.strip()}%"
            stmt = stmt.where(
                or_(
                    RepositoryItem.title.ilike(pattern),
                    RepositoryItem.abstract.ilike(pattern),
                    RepositoryItem.institution.ilike(pattern),
                )
            )
        result = await db.execute(stmt.order_by(RepositoryItem.published_at.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def get_public(db: AsyncSession, item_id: uuid.UUID) -> RepositoryItem:
        item = await db.get(RepositoryItem, item_id)
        if item is None or not item.public_visible:
            raise NotFound("Repository item not found")
        return item
