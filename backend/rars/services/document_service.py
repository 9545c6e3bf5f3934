"""Document version ledger.

Documents form an append-only ledger keyed by (application, document type).
A new upload gets ``version = 1 + max(existing versions)``; soft-deleted rows
keep their version so numbers are never reused.  Concurrent uploads that
compute the same version collide on the unique constraint and are retried
with a fresh read.
"""

import logging
import time
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.errors import (
    ConflictingVersion,
    InvalidTransition,
    NotFound,
    Unauthorized,
    UpstreamFailure,
    ValidationFailure,
)
from rars.lifecycle import EDITABLE_STATUSES, TERMINAL_STATUSES
from rars.models.db.application import Application
from rars.models.db.document import Document
from rars.models.enums import ApplicantType, ApplicationStatus, DocumentType
from rars.permissions import Principal, can
from rars.services.audit_service import AuditService
from rars.storage import MAX_FILE_SIZE_BYTES, DocumentStorage, safe_file_name

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_VERSION_ATTEMPTS = 5

BASE_REQUIRED_DOCUMENTS = frozenset({DocumentType.ETHICS_LETTER, DocumentType.PROPOSAL})
STUDENT_REQUIRED_DOCUMENTS = frozenset(
    {DocumentType.SUPERVISOR_LETTER, DocumentType.INSTITUTION_LETTER}
)

# Issued by the decision subsystem only.
LETTER_TYPES = frozenset({DocumentType.APPROVAL_LETTER, DocumentType.REJECTION_LETTER})

# Research outputs the applicant may add after approval.
OUTPUT_TYPES = frozenset(
    {
        DocumentType.FINAL_PAPER,
        DocumentType.TOOL,
        DocumentType.DATASET,
        DocumentType.CODEBOOK,
        DocumentType.OTHER,
    }
)
OUTPUT_STATUSES = frozenset(
    {
        ApplicationStatus.APPROVED,
        ApplicationStatus.ACTIVE_RESEARCH,
        ApplicationStatus.FINAL_SUBMISSION_PENDING,
    }
)


def required_documents(applicant_type: str | ApplicantType) -> frozenset[DocumentType]:
    """Document types an application must carry before substantive review."""
    if str(getattr(applicant_type, "value", applicant_type)) == ApplicantType.STUDENT.value:
        return BASE_REQUIRED_DOCUMENTS | STUDENT_REQUIRED_DOCUMENTS
    return BASE_REQUIRED_DOCUMENTS


def build_storage_key(
    uploader_id: uuid.UUID,
    application_id: uuid.UUID,
    document_type: DocumentType,
    file_name: str,
) -> str:
    timestamp = int(time.time() * 1000)
    return (
        f"{uploader_id}/{application_id}/{document_type.value}/"
        f"{timestamp}_{safe_file_name(file_name)}"
    )


def _parse_type(document_type: str | DocumentType) -> DocumentType:
    try:
        return DocumentType(document_type)
    except ValueError as exc:
        raise ValidationFailure(f"Unknown document type '{document_type}'") from exc


class DocumentService:
    """Upload, version, list and check documents for an application."""

    # ------------------------------------------------------------------
    # version bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    async def _current_max_version(
        db: AsyncSession, application_id: uuid.UUID, document_type: DocumentType
    ) -> int:
        result = await db.execute(
            select(func.coalesce(func.max(Document.version), 0)).where(
                Document.application_id == application_id,
                Document.document_type == document_type.value,
            )
        )
        return int(result.scalar_one())

    @staticmethod
    async def record(
        db: AsyncSession,
        *,
        application_id: uuid.UUID,
        document_type: DocumentType,
        file_name: str,
        storage_key: str,
        mime_type: str,
        size_bytes: int,
        uploaded_by: uuid.UUID,
    ) -> Document:
        """Insert the next ledger row inside the caller's transaction.

        Used for system-generated documents (decision letters) where the
        surrounding transition owns retries.
        """
        version = (
            await DocumentService._current_max_version(db, application_id, document_type)
            + 1
        )
        document = Document(
            application_id=application_id,
            document_type=document_type.value,
            version=version,
            file_name=file_name,
            storage_key=storage_key,
            mime_type=mime_type,
            size_bytes=size_bytes,
            uploaded_by=uploaded_by,
        )
        db.add(document)
        await db.flush()
        return document

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------

    @staticmethod
    async def upload(
        db: AsyncSession,
        storage: DocumentStorage,
        principal: Principal,
        application_id: uuid.UUID,
        document_type: str | DocumentType,
        file_name: str,
        data: bytes,
        mime_type: Optional[str] = None,
    ) -> Document:
        """Store *data* in the object store and append a ledger row.

        Args:
            db: Async database session.
            storage: Object store client.
            principal: Uploading principal.
            application_id: Owning application.
            document_type: One of :class:`DocumentType` (letters excluded).
            file_name: Original file name.
            data: File contents.
            mime_type: Declared MIME type.

        Returns:
            The new Document row with its assigned version.

        Raises:
            NotFound: Application does not exist.
            Unauthorized: Principal may not upload to this application.
            InvalidTransition: Application status does not accept this type.
            ValidationFailure: Empty/oversized file or a reserved type.
            ConflictingVersion: Version could not be assigned after retries.
        """
        doc_type = _parse_type(document_type)
        if doc_type in LETTER_TYPES:
            raise ValidationFailure(
                f"{doc_type.value} documents are issued by the decision process"
            )
        if not data:
            raise ValidationFailure("Uploaded file is empty.")
        if len(data) > MAX_FILE_SIZE_BYTES:
            raise ValidationFailure(
                f"File size ({len(data):,} bytes) exceeds the "
                f"{MAX_FILE_SIZE_BYTES // (1024 * 1024)} MB limit."
            )

        application = await db.get(Application, application_id)
        if application is None:
            raise NotFound("Application not found")
        if not can(principal, "upload_document", application):
            raise Unauthorized("You cannot upload documents to this application")
        DocumentService._check_upload_window(principal, application, doc_type)

        key = build_storage_key(principal.id, application_id, doc_type, file_name)
        await storage.upload(key, data, mime_type or "application/octet-stream")

        try:
            document = await DocumentService._insert_with_retry(
                db,
                application_id=application_id,
                document_type=doc_type,
                file_name=safe_file_name(file_name),
                storage_key=key,
                mime_type=mime_type or "application/octet-stream",
                size_bytes=len(data),
                uploaded_by=principal.id,
            )
        except ConflictingVersion:
            await DocumentService._discard_blob(storage, key)
            raise

        # Re-read: a version retry rolls back and expires loaded rows.
        application = await db.get(Application, application_id)
        if doc_type == DocumentType.ETHICS_LETTER and not application.ethics_approved:
            application.ethics_approved = True
            logger.info("Ethics approval recorded for application %s", application_id)

        AuditService.record(
            db,
            principal.id,
            "document",
            document.id,
            "upload",
            after={
                "application_id": application_id,
                "document_type": doc_type.value,
                "version": document.version,
            },
        )
        await db.flush()
        logger.info(
            "Uploaded %s v%d (%d bytes) for application %s",
            doc_type.value,
            document.version,
            len(data),
            application_id,
        )
        return document

    @staticmethod
    def _check_upload_window(
        principal: Principal, application: Application, doc_type: DocumentType
    ) -> None:
        status = ApplicationStatus(application.status)
        if status in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Documents cannot be added to a {status.value} application"
            )
        if str(application.applicant_id) != str(principal.id):
            return  # staff upload
        if status in EDITABLE_STATUSES:
            return
        if status in OUTPUT_STATUSES and doc_type in OUTPUT_TYPES:
            return
        raise InvalidTransition(
            f"{doc_type.value} cannot be uploaded while the application is {status.value}"
        )

    @staticmethod
    async def _insert_with_retry(db: AsyncSession, **fields) -> Document:
        application_id = fields["application_id"]
        document_type = fields["document_type"]
        for attempt in range(1, MAX_VERSION_ATTEMPTS + 1):
            version = (
                await DocumentService._current_max_version(
                    db, application_id, document_type
                )
                + 1
            )
            document = Document(
                **{**fields, "document_type": document_type.value},
                version=version,
            )
            db.add(document)
            try:
                await db.flush()
                return document
            except IntegrityError:
                await db.rollback()
                logger.warning(
                    "Version %d of %s for application %s already taken "
                    "(attempt %d/%d), recomputing",
                    version,
                    document_type.value,
                    application_id,
                    attempt,
                    MAX_VERSION_ATTEMPTS,
                )
        raise ConflictingVersion(
            f"Could not assign a version for {document_type.value} after "
            f"{MAX_VERSION_ATTEMPTS} attempts",
            application_id=str(application_id),
        )

    @staticmethod
    async def _discard_blob(storage: DocumentStorage, key: str) -> None:
        try:
            await storage.delete(key)
        except UpstreamFailure as exc:
            logger.error("Orphaned blob %s could not be removed: %s", key, exc)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    @staticmethod
    async def list_documents(
        db: AsyncSession,
        principal: Principal,
        application_id: uuid.UUID,
        include_deleted: bool = False,
    ) -> list[Document]:
        application = await db.get(Application, application_id)
        if application is None:
            raise NotFound("Application not found")
        if not can(principal, "view_application", application):
            raise Unauthorized("You cannot view this application")

        query = select(Document).where(Document.application_id == application_id)
        if not include_deleted:
            query = query.where(Document.is_deleted.is_(False))
        result = await db.execute(
            query.order_by(Document.document_type, Document.version.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def checklist(
        db: AsyncSession, application_id: uuid.UUID
    ) -> dict[DocumentType, bool]:
        """Presence (any live version) of each required document type."""
        application = await db.get(Application, application_id)
        if application is None:
            raise NotFound("Application not found")

        result = await db.execute(
            select(Document.document_type)
            .where(
                Document.application_id == application_id,
                Document.is_deleted.is_(False),
            )
            .distinct()
        )
        present = {row[0] for row in result}
        return {
            doc_type: doc_type.value in present
            for doc_type in sorted(
                required_documents(application.applicant_type), key=lambda t: t.value
            )
        }

    @staticmethod
    async def missing_required(
        db: AsyncSession, application_id: uuid.UUID
    ) -> list[DocumentType]:
        checklist = await DocumentService.checklist(db, application_id)
        return [doc_type for doc_type, present in checklist.items() if not present]

    @staticmethod
    async def has_document(
        db: AsyncSession, application_id: uuid.UUID, document_type: DocumentType
    ) -> bool:
        result = await db.execute(
            select(func.count(Document.id)).where(
                Document.application_id == application_id,
                Document.document_type == document_type.value,
                Document.is_deleted.is_(False),
            )
        )
        return result.scalar_one() > 0

    @staticmethod
    async def latest(
        db: AsyncSession, application_id: uuid.UUID, document_type: DocumentType
    ) -> Optional[Document]:
        result = await db.execute(
            select(Document)
            .where(
                Document.application_id == application_id,
                Document.document_type == document_type.value,
                Document.is_deleted.is_(False),
            )
            .order_by(Document.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def download_url(
        db: AsyncSession,
        storage: DocumentStorage,
        principal: Principal,
        document_id: uuid.UUID,
        ttl_seconds: int = 300,
    ) -> str:
        document = await db.get(Document, document_id)
        if document is None or document.is_deleted:
            raise NotFound("Document not found")
        application = await db.get(Application, document.application_id)
        if not can(principal, "view_application", application):
            raise Unauthorized("You cannot view this document")
        return await storage.signed_url(document.storage_key, ttl_seconds)

    # ------------------------------------------------------------------
    # soft delete
    # ------------------------------------------------------------------

    @staticmethod
    async def soft_delete(
        db: AsyncSession, principal: Principal, document_id: uuid.UUID
    ) -> Document:
        """Hide a document.  Its version stays reserved in the ledger."""
        document = await db.get(Document, document_id)
        if document is None or document.is_deleted:
            raise NotFound("Document not found")
        application = await db.get(Application, document.application_id)
        if not can(principal, "delete_document", application):
            raise Unauthorized("You cannot delete documents on this application")
        if DocumentType(document.document_type) in LETTER_TYPES:
            raise ValidationFailure("Decision letters cannot be deleted")

        is_owner = str(application.applicant_id) == str(principal.id)
        if is_owner and ApplicationStatus(application.status) not in EDITABLE_STATUSES:
            raise InvalidTransition(
                "Documents can only be removed while the application is editable"
            )

        document.is_deleted = True
        AuditService.record(
            db,
            principal.id,
            "document",
            document.id,
            "soft_delete",
            before={"is_deleted": False},
            after={"is_deleted": True},
        )
        await db.flush()
        return document

