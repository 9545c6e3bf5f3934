"""Extension request router."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal, idempotency_key
from rars.errors import UpstreamFailure
from rars.models.extension_models import (
    ExtensionCreate,
    ExtensionDecisionRequest,
    ExtensionListResponse,
    ExtensionResponse,
)
from rars.permissions import Principal
from rars.services.extension_service import ExtensionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["extensions"])


@router.post(
    "/applications/{application_id}/extensions",
    response_model=ExtensionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_extension(
    application_id: uuid.UUID,
    body: ExtensionCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Ask for a later end date on an APPROVED or ACTIVE_RESEARCH application."""
    try:
        extension = await ExtensionService.request(
            db, principal, application_id, body.requested_end_date, body.reason
        )
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("requesting extension", e)) from e
    return ExtensionResponse.model_validate(extension)


@router.get(
    "/applications/{application_id}/extensions",
    response_model=list[ExtensionResponse],
)
async def list_application_extensions(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        extensions = await ExtensionService.list_for_application(
            db, principal, application_id
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing extensions", e)) from e
    return [ExtensionResponse.model_validate(x) for x in extensions]


@router.get("/extensions", response_model=ExtensionListResponse)
async def list_extensions(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Staff queue of extension requests, newest first."""
    try:
        extensions = await ExtensionService.list_all(db, principal, status_filter)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing extensions", e)) from e
    return ExtensionListResponse(
        extensions=[ExtensionResponse.model_validate(x) for x in extensions],
        total=len(extensions),
    )


@router.post("/extensions/{extension_id}/decision", response_model=ExtensionResponse)
async def decide_extension(
    extension_id: uuid.UUID,
    body: ExtensionDecisionRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Approve or reject a pending request.

    Approval writes the requested date to the application's end date.
    """
    try:
        extension = await ExtensionService.decide(
            db, principal, extension_id, body.status.value, body.notes, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("deciding extension", e)) from e
    return ExtensionResponse.model_validate(extension)
