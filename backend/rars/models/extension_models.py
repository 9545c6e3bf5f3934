"""Pydantic schemas for extension requests."""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from rars.models.enums import ExtensionStatus


class ExtensionCreate(BaseModel):
    requested_end_date: date
    reason: str = Field(..., max_length=5000)


class ExtensionDecisionRequest(BaseModel):
    status: ExtensionStatus
    notes: Optional[str] = Field(None, max_length=5000)


class ExtensionResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    requested_by: uuid.UUID
    reason: str
    current_end_date: Optional[date] = None
    requested_end_date: date
    status: str
    decided_by: Optional[uuid.UUID] = None
    decision_date: Optional[datetime] = None
    decision_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExtensionListResponse(BaseModel):
    extensions: List[ExtensionResponse]
    total: int
