"""Research repository router: staff publication plus the public catalogue."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal, idempotency_key
from rars.errors import UpstreamFailure
from rars.models.repository_models import PublishRequest, RepositoryItemResponse
from rars.permissions import Principal
from rars.services.repository_service import RepositoryService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["repository"])


@router.post(
    "/applications/{application_id}/publish", response_model=RepositoryItemResponse
)
async def publish_application(
    application_id: uuid.UUID,
    body: PublishRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Publish a completed study to the repository.

    Patient-level or restricted studies are listed with ``restricted`` set
    unless the request says otherwise.
    """
    try:
        item = await RepositoryService.publish(
            db,
            principal,
            application_id,
            publication_year=body.publication_year,
            keywords=body.keywords,
            institution=body.institution,
            program_area=body.program_area,
            restricted=body.restricted,
            abstract=body.abstract,
            idempotency_key=key,
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("publishing application", e)) from e
    return RepositoryItemResponse.model_validate(item)


@router.get("/repository", response_model=list[RepositoryItemResponse])
async def list_repository(
    q: Optional[str] = Query(None, max_length=200, description="Search text"),
    year: Optional[int] = Query(None, ge=1900, le=2100),
    db: AsyncSession = Depends(get_db),
):
    """Public listing of published research. No authentication."""
    try:
        items = await RepositoryService.list_public(db, q, year)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing repository", e)) from e
    return [RepositoryItemResponse.model_validate(i) for i in items]


@router.get("/repository/{item_id}", response_model=RepositoryItemResponse)
async def get_repository_item(
    item_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    try:
        item = await RepositoryService.get_public(db, item_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("fetching repository item", e)) from e
    return RepositoryItemResponse.model_validate(item)
