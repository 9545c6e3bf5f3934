"""Decision router plus the public letter verification endpoint."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal, idempotency_key
from rars.errors import UpstreamFailure
from rars.models.db.decision import ApprovalSignature, Decision
from rars.models.decision_models import (
    DecisionRequest,
    DecisionResponse,
    VerificationResponse,
)
from rars.permissions import Principal
from rars.security import limiter
from rars.services.decision_service import DecisionService
from rars.storage import DocumentStorage, get_storage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["decisions"])


def _decision_response(
    decision: Decision, signature: Optional[ApprovalSignature]
) -> DecisionResponse:
    response = DecisionResponse.model_validate(decision)
    if signature is not None:
        response.verification_token = signature.token
        response.payload_hash = signature.payload_hash
    return response


@router.post(
    "/applications/{application_id}/decision", response_model=DecisionResponse
)
async def record_decision(
    application_id: uuid.UUID,
    body: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    storage: DocumentStorage = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
    key: Optional[str] = Depends(idempotency_key),
):
    """Approve or reject an application awaiting a decision.

    Generates the decision letter PDF.  Approvals also issue the signature
    token printed on the letter as a QR code.

    Args:
        application_id: Application in ED_DECISION.
        body: ``APPROVED`` or ``REJECTED`` with optional notes.
        db: Async database session (injected).
        storage: Object store receiving the letter (injected).
        principal: Deciding staff member (injected).
        key: Optional Idempotency-Key header.

    Returns:
        The decision, including the verification token on approval.
    """
    try:
        await DecisionService.decide(
            db,
            storage,
            principal,
            application_id,
            body.decision.value,
            body.notes,
            key,
        )
        decision, signature = await DecisionService.for_application(
            db, principal, application_id
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("recording decision", e)) from e
    return _decision_response(decision, signature)


@router.get(
    "/applications/{application_id}/decision", response_model=DecisionResponse
)
async def get_decision(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        decision, signature = await DecisionService.for_application(
            db, principal, application_id
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("fetching decision", e)) from e
    return _decision_response(decision, signature)


@router.get(
    "/verify/{token}",
    response_model=VerificationResponse,
    response_model_exclude_none=True,
)
@limiter.limit("30/minute")
async def verify_token(
    request: Request,
    token: str,
    db: AsyncSession = Depends(get_db),
):
    """Public check of an approval letter's QR token.

    No authentication.  Unknown, rejected or tampered tokens all answer
    ``{"valid": false}`` with no further detail.
    """
    try:
        result = await DecisionService.verify(db, token)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("verifying token", e)) from e
    return VerificationResponse(**result)
