"""Applications router: drafts, lifecycle actions, history and messages.

Every status change is delegated to :class:`ApplicationService`, which
commits the transition itself.  Typed ``RarsError`` failures propagate to
the handler registered in :mod:`rars.security`.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal, idempotency_key
from rars.errors import UpstreamFailure
from rars.models.application_models import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationUpdate,
    MessageResponse,
    ReturnRequest,
    StatusHistoryResponse,
)
from rars.permissions import Principal
from rars.services.application_service import ApplicationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["applications"])


# ---------------------------------------------------------------------------
# POST /applications
# ---------------------------------------------------------------------------


@router.post(
    "/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_application(
    body: ApplicationCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Create a DRAFT application owned by the caller.

    Args:
        body: Proposal fields; all optional at draft stage.
        db: Async database session (injected).
        principal: Authenticated caller (injected).

    Returns:
        The new application with its reference number.
    """
    try:
        application = await ApplicationService.create(
            db, principal, body.model_dump(exclude_unset=True)
        )
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("creating application", e)) from e
    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# GET /applications
# ---------------------------------------------------------------------------


@router.get("/applications", response_model=ApplicationListResponse)
async def list_applications(
    status_filter: Optional[str] = Query(
        None, alias="status", description="Filter by status"
    ),
    mine: bool = Query(False, description="Only the caller's own applications"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """List applications visible to the caller.

    Applicants only ever see their own; staff see every application unless
    ``mine`` is set.
    """
    try:
        applications = await ApplicationService.list_applications(
            db, principal, status=status_filter, mine=mine
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing applications", e)) from e

    return ApplicationListResponse(
        applications=[ApplicationResponse.model_validate(a) for a in applications],
        total=len(applications),
    )


# ---------------------------------------------------------------------------
# GET / PATCH /applications/{application_id}
# ---------------------------------------------------------------------------


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        application = await ApplicationService.get(db, principal, application_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("fetching application", e)) from e
    return ApplicationResponse.model_validate(application)


@router.patch("/applications/{application_id}", response_model=ApplicationResponse)
async def update_application(
    application_id: uuid.UUID,
    body: ApplicationUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Edit proposal fields while the application is DRAFT or RETURNED.

    Only fields present in the request body are changed.
    """
    try:
        application = await ApplicationService.update_draft(
            db, principal, application_id, body.model_dump(exclude_unset=True)
        )
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("updating application", e)) from e
    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# Lifecycle actions
# ---------------------------------------------------------------------------


@router.post(
    "/applications/{application_id}/submit", response_model=ApplicationResponse
)
async def submit_application(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Submit a DRAFT or RETURNED application for screening.

    Fails with 409 until an ethics approval letter has been uploaded.
    """
    try:
        application = await ApplicationService.submit(db, principal, application_id, key)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("submitting application", e)) from e
    return ApplicationResponse.model_validate(application)


@router.post(
    "/applications/{application_id}/start-screening",
    response_model=ApplicationResponse,
)
async def start_screening(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    try:
        application = await ApplicationService.start_screening(
            db, principal, application_id, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("starting screening", e)) from e
    return ApplicationResponse.model_validate(application)


@router.post(
    "/applications/{application_id}/return", response_model=ApplicationResponse
)
async def return_application(
    application_id: uuid.UUID,
    body: ReturnRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Return the application to the applicant with feedback.

    The reason is stored as a message on the application and e-mailed to
    the applicant.
    """
    try:
        application = await ApplicationService.return_application(
            db, principal, application_id, body.reason, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("returning application", e)) from e
    return ApplicationResponse.model_validate(application)


@router.post(
    "/applications/{application_id}/forward", response_model=ApplicationResponse
)
async def forward_to_review(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    try:
        application = await ApplicationService.forward_to_review(
            db, principal, application_id, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("forwarding application", e)) from e
    return ApplicationResponse.model_validate(application)


@router.post(
    "/applications/{application_id}/activate", response_model=ApplicationResponse
)
async def activate_research(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    try:
        application = await ApplicationService.activate_research(
            db, principal, application_id, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("activating research", e)) from e
    return ApplicationResponse.model_validate(application)


@router.post(
    "/applications/{application_id}/submit-final",
    response_model=ApplicationResponse,
)
async def submit_final(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Hand in final outputs; a FINAL_PAPER document must already exist."""
    try:
        application = await ApplicationService.submit_final(
            db, principal, application_id, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("submitting final outputs", e)) from e
    return ApplicationResponse.model_validate(application)


@router.post(
    "/applications/{application_id}/complete", response_model=ApplicationResponse
)
async def complete_application(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    try:
        application = await ApplicationService.complete(
            db, principal, application_id, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("completing application", e)) from e
    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# History and messages
# ---------------------------------------------------------------------------


@router.get(
    "/applications/{application_id}/history",
    response_model=list[StatusHistoryResponse],
)
async def get_status_history(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Status changes in chronological order."""
    try:
        rows = await ApplicationService.history(db, principal, application_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("fetching status history", e)) from e
    return [StatusHistoryResponse.model_validate(r) for r in rows]


@router.get(
    "/applications/{application_id}/messages",
    response_model=list[MessageResponse],
)
async def get_messages(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        rows = await ApplicationService.messages(db, principal, application_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("fetching messages", e)) from e
    return [MessageResponse.model_validate(r) for r in rows]
