"""Reviewer assignment and review submission router."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal, idempotency_key
from rars.errors import UpstreamFailure
from rars.models.review_models import (
    AssignReviewerRequest,
    ReviewResponse,
    SubmitReviewRequest,
)
from rars.permissions import Principal
from rars.services.review_service import ReviewService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["reviews"])


@router.post(
    "/applications/{application_id}/reviews",
    response_model=ReviewResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_reviewer(
    application_id: uuid.UUID,
    body: AssignReviewerRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Assign a reviewer for one stage.

    The first assignment moves a SUBMITTED/SCREENING application to IN_REVIEW;
    further stages can be added while it stays IN_REVIEW.
    """
    try:
        review = await ReviewService.assign(
            db, principal, application_id, body.reviewer_id, body.stage.value, key
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("assigning reviewer", e)) from e
    return ReviewResponse.model_validate(review)


@router.get(
    "/applications/{application_id}/reviews", response_model=list[ReviewResponse]
)
async def list_reviews(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        reviews = await ReviewService.list_for_application(db, principal, application_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing reviews", e)) from e
    return [ReviewResponse.model_validate(r) for r in reviews]


@router.post("/reviews/{review_id}/submit", response_model=ReviewResponse)
async def submit_review(
    review_id: uuid.UUID,
    body: SubmitReviewRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Record the assigned reviewer's recommendation and comments."""
    try:
        review = await ReviewService.submit(
            db,
            principal,
            review_id,
            body.recommendation.value,
            body.comments,
            key,
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("submitting review", e)) from e
    return ReviewResponse.model_validate(review)


@router.get("/me/reviews", response_model=list[ReviewResponse])
async def my_reviews(
    pending: bool = Query(False, description="Only reviews not yet submitted"),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        reviews = await ReviewService.my_reviews(db, principal, pending_only=pending)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing assigned reviews", e)) from e
    return [ReviewResponse.model_validate(r) for r in reviews]
