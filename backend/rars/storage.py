"""Azure Blob Storage integration for application documents.

The document ledger decides every blob key; this module only moves bytes and
mints time-limited SAS URLs.  Every remote call is retried with exponential
backoff and surfaces as :class:`~rars.errors.UpstreamFailure` once the
retries are exhausted.

Usage::

    from rars.storage import get_storage

    storage = get_storage()
    await storage.upload(key, file_bytes, "application/pdf")
    url = await storage.signed_url(key, ttl_seconds=300)
"""

import logging
import os
from datetime import datetime, timedelta, timezone

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobSasPermissions, ContentSettings, generate_blob_sas
from azure.storage.blob.aio import BlobServiceClient
from dotenv import load_dotenv

from rars.errors import UpstreamFailure, ValidationFailure
from rars.helpers.retry import with_retry

load_dotenv()

logger = logging.getLogger(__name__)

CONTAINER_NAME = os.getenv("RARS_STORAGE_CONTAINER", "rars-documents")
MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024  # 25 MB


def safe_file_name(filename: str) -> str:
    return filename.replace("/", "_").replace("\\", "_").strip() or "file"


class DocumentStorage:
    """Async wrapper around Azure Blob Storage, addressed by opaque key."""

    def __init__(
        self,
        connection_string: str | None = None,
        container: str = CONTAINER_NAME,
    ) -> None:
        self.connection_string: str | None = connection_string or os.getenv(
            "AZURE_STORAGE_CONNECTION_STRING"
        )
        self.account_name: str | None = os.getenv("AZURE_STORAGE_ACCOUNT_NAME")
        self.account_key: str | None = os.getenv("AZURE_STORAGE_ACCOUNT_KEY")
        self.container = container

        if not self.connection_string:
            logger.warning(
                "AZURE_STORAGE_CONNECTION_STRING not set: "
                "document upload/download will fail at call time"
            )

    def _require_connection(self) -> str:
        if not self.connection_string:
            raise UpstreamFailure(
                "Document storage is not configured "
                "(AZURE_STORAGE_CONNECTION_STRING is not set)"
            )
        return self.connection_string

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Upload *data* under *key* and return the key.

        Raises:
            ValidationFailure: File exceeds ``MAX_FILE_SIZE_BYTES``.
            UpstreamFailure: Storage is not configured, or the blob service
                call still failed after the retries.
        """
        if len(data) > MAX_FILE_SIZE_BYTES:
            raise ValidationFailure(
                f"File size {len(data)} bytes exceeds maximum of "
                f"{MAX_FILE_SIZE_BYTES // (1024 * 1024)} MB"
            )
        await self._upload(self._require_connection(), key, data, content_type)
        logger.info("Uploaded %d bytes to %s", len(data), key)
        return key

    @with_retry()
    async def _upload(
        self, connection_string: str, key: str, data: bytes, content_type: str
    ) -> None:
        try:
            async with BlobServiceClient.from_connection_string(
                connection_string
            ) as client:
                blob_client = client.get_blob_client(container=self.container, blob=key)
                await blob_client.upload_blob(
                    data,
                    content_settings=ContentSettings(content_type=content_type),
                    overwrite=True,
                )
        except AzureError as exc:
            raise UpstreamFailure(f"Blob upload failed: {exc}", key=key) from exc

    async def delete(self, key: str) -> None:
        """Delete the blob stored under *key* (used to compensate failed writes)."""
        await self._delete(self._require_connection(), key)
        logger.info("Deleted blob: %s", key)

    @with_retry()
    async def _delete(self, connection_string: str, key: str) -> None:
        try:
            async with BlobServiceClient.from_connection_string(
                connection_string
            ) as client:
                blob_client = client.get_blob_client(container=self.container, blob=key)
                await blob_client.delete_blob(delete_snapshots="include")
        except AzureError as exc:
            raise UpstreamFailure(f"Blob delete failed: {exc}", key=key) from exc

    async def signed_url(self, key: str, ttl_seconds: int = 300) -> str:
        """Generate a time-limited, read-only SAS URL for *key*."""
        self._require_connection()
        if not self.account_name or not self.account_key:
            parts = dict(
                pair.split("=", 1)
                for pair in (self.connection_string or "").split(";")
                if "=" in pair
            )
            self.account_name = parts.get("AccountName")
            self.account_key = parts.get("AccountKey")

        if not self.account_name or not self.account_key:
            raise UpstreamFailure(
                "Cannot generate SAS URL: AZURE_STORAGE_ACCOUNT_NAME and "
                "AZURE_STORAGE_ACCOUNT_KEY are required, or include them in "
                "AZURE_STORAGE_CONNECTION_STRING"
            )

        sas_token = generate_blob_sas(
            account_name=self.account_name,
            container_name=self.container,
            blob_name=key,
            account_key=self.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
        )
        return (
            f"https://{self.account_name}.blob.core.windows.net/"
            f"{self.container}/{key}?{sas_token}"
        )


_storage: DocumentStorage | None = None


def get_storage() -> DocumentStorage:
    """FastAPI dependency returning the process-wide storage client."""
    global _storage
    if _storage is None:
        _storage = DocumentStorage()
    return _storage
