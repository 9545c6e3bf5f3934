"""Pydantic schemas for the document ledger."""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class DocumentResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    document_type: str
    version: int
    file_name: str
    mime_type: str
    size_bytes: int
    uploaded_by: uuid.UUID
    is_deleted: bool = False
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChecklistItem(BaseModel):
    document_type: str
    present: bool


class ChecklistResponse(BaseModel):
    application_id: uuid.UUID
    complete: bool
    items: List[ChecklistItem]


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in_seconds: int
