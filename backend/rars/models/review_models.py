"""Pydantic schemas for reviewer assignment and submission."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from rars.models.enums import Recommendation, ReviewStage


class AssignReviewerRequest(BaseModel):
    reviewer_id: uuid.UUID
    stage: ReviewStage = ReviewStage.PROGRAM


class SubmitReviewRequest(BaseModel):
    recommendation: Recommendation
    comments: Optional[str] = Field(None, max_length=10000)


class ReviewResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    reviewer_id: uuid.UUID
    assigned_by: Optional[uuid.UUID] = None
    stage: str
    recommendation: Optional[str] = None
    comments: Optional[str] = None
    assigned_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None

    class Config:
        from_attributes = True
