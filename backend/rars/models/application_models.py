"""Pydantic request/response schemas for research applications."""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from rars.models.enums import ApplicantType, DataType, SensitivityLevel


class ApplicationFields(BaseModel):
    """Editable proposal fields shared by create and update."""

    title: Optional[str] = Field(None, max_length=500)
    abstract: Optional[str] = Field(None, max_length=10000)
    objectives: Optional[str] = Field(None, max_length=10000)
    methodology: Optional[str] = Field(None, max_length=20000)
    institution: Optional[str] = Field(None, max_length=300)
    program_area: Optional[str] = Field(None, max_length=300)
    keywords: Optional[str] = Field(None, max_length=1000)
    applicant_type: Optional[ApplicantType] = None
    data_type: Optional[DataType] = None
    sensitivity_level: Optional[SensitivityLevel] = None
    supervisor_name: Optional[str] = Field(None, max_length=300)
    supervisor_email: Optional[str] = Field(None, max_length=320)
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ApplicationCreate(ApplicationFields):
    """Request body for creating a DRAFT application."""


class ApplicationUpdate(ApplicationFields):
    """Request body for editing a DRAFT/RETURNED application. All fields optional."""


class ApplicationResponse(BaseModel):
    id: uuid.UUID
    reference_number: str
    applicant_id: uuid.UUID
    applicant_type: str
    title: str
    abstract: Optional[str] = None
    objectives: Optional[str] = None
    methodology: Optional[str] = None
    institution: Optional[str] = None
    program_area: Optional[str] = None
    keywords: Optional[str] = None
    data_type: str
    sensitivity_level: str
    ethics_approved: bool
    supervisor_name: Optional[str] = None
    supervisor_email: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str
    screening_deadline: Optional[datetime] = None
    turnaround_deadline: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationResponse]
    total: int


class ReturnRequest(BaseModel):
    """Request body for returning an application to the applicant."""

    reason: str = Field(..., max_length=5000, description="Feedback for the applicant")


class StatusHistoryResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    old_status: Optional[str] = None
    new_status: str
    changed_by: Optional[uuid.UUID] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    sender_id: uuid.UUID
    body: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
