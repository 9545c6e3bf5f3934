"""Pydantic schemas for decisions and public letter verification."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from rars.models.enums import DecisionType


class DecisionRequest(BaseModel):
    decision: DecisionType
    notes: Optional[str] = Field(None, max_length=5000)


class DecisionResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    decision: str
    decided_by: uuid.UUID
    notes: Optional[str] = None
    letter_document_id: Optional[uuid.UUID] = None
    decision_date: Optional[datetime] = None
    verification_token: Optional[str] = None
    payload_hash: Optional[str] = None

    class Config:
        from_attributes = True


class VerificationResponse(BaseModel):
    """Public verification result; only ``valid`` is set when invalid."""

    valid: bool
    issued_at: Optional[datetime] = None
    decision: Optional[str] = None
    decision_date: Optional[datetime] = None
    reference_number: Optional[str] = None
    title: Optional[str] = None
    applicant_name: Optional[str] = None
    payload_hash: Optional[str] = None
