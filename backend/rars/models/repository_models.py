"""Pydantic schemas for repository publication."""

import uuid
from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class PublishRequest(BaseModel):
    publication_year: int = Field(..., ge=1900, le=2100)
    keywords: Union[str, List[str]] = Field(
        ..., description="Comma separated string or list of keywords"
    )
    institution: Optional[str] = Field(None, max_length=300)
    program_area: Optional[str] = Field(None, max_length=300)
    restricted: Optional[bool] = None
    abstract: Optional[str] = Field(None, max_length=10000)


class RepositoryItemResponse(BaseModel):
    id: uuid.UUID
    application_id: uuid.UUID
    title: str
    abstract: Optional[str] = None
    keywords: List[str] = []
    publication_year: int
    institution: str
    program_area: Optional[str] = None
    public_visible: bool
    restricted: bool
    published_at: Optional[datetime] = None

    class Config:
        from_attributes = True
