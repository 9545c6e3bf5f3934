"""Document router: multipart upload, ledger listing, checklist and downloads."""

import logging
import uuid

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.database import get_db
from rars.deps import _safe_error, get_current_principal
from rars.errors import UpstreamFailure
from rars.models.document_models import (
    ChecklistItem,
    ChecklistResponse,
    DocumentResponse,
    DownloadUrlResponse,
)
from rars.permissions import Principal
from rars.services.application_service import ApplicationService
from rars.services.document_service import DocumentService
from rars.storage import DocumentStorage, get_storage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["documents"])

DOWNLOAD_URL_TTL_SECONDS = 300


@router.post(
    "/applications/{application_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    application_id: uuid.UUID,
    file: UploadFile = File(...),
    document_type: str = Form(...),
    db: AsyncSession = Depends(get_db),
    storage: DocumentStorage = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    """Upload a new version of a document.

    Versions are assigned per (application, document type) and never reused.
    Uploading an ETHICS_LETTER marks the application as ethics approved.

    Args:
        application_id: UUID of the owning application.
        file: The file to upload (multipart).
        document_type: One of the document type values.
        db: Async database session (injected).
        storage: Object store client (injected).
        principal: Authenticated caller (injected).

    Returns:
        The created ledger row.
    """
    data = await file.read()
    try:
        document = await DocumentService.upload(
            db,
            storage,
            principal,
            application_id,
            document_type,
            file.filename or "upload",
            data,
            file.content_type,
        )
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("uploading document", e)) from e
    return DocumentResponse.model_validate(document)


@router.get(
    "/applications/{application_id}/documents",
    response_model=list[DocumentResponse],
)
async def list_documents(
    application_id: uuid.UUID,
    include_deleted: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        documents = await DocumentService.list_documents(
            db, principal, application_id, include_deleted=include_deleted
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing documents", e)) from e
    return [DocumentResponse.model_validate(d) for d in documents]


@router.get(
    "/applications/{application_id}/checklist", response_model=ChecklistResponse
)
async def get_checklist(
    application_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Required document types for the applicant type and whether each is present."""
    try:
        await ApplicationService.get(db, principal, application_id)
        checklist = await DocumentService.checklist(db, application_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("building checklist", e)) from e

    return ChecklistResponse(
        application_id=application_id,
        complete=all(checklist.values()),
        items=[
            ChecklistItem(document_type=doc_type.value, present=present)
            for doc_type, present in checklist.items()
        ],
    )


@router.get("/documents/{document_id}/download-url", response_model=DownloadUrlResponse)
async def get_download_url(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: DocumentStorage = Depends(get_storage),
    principal: Principal = Depends(get_current_principal),
):
    try:
        url = await DocumentService.download_url(
            db, storage, principal, document_id, DOWNLOAD_URL_TTL_SECONDS
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("generating download URL", e)) from e
    return DownloadUrlResponse(url=url, expires_in_seconds=DOWNLOAD_URL_TTL_SECONDS)


@router.delete("/documents/{document_id}", response_model=DocumentResponse)
async def delete_document(
    document_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Soft-delete a document; its version number stays reserved."""
    try:
        document = await DocumentService.soft_delete(db, principal, document_id)
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("deleting document", e)) from e
    return DocumentResponse.model_validate(document)
