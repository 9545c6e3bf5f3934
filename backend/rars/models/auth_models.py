"""Pydantic schemas for login and the current principal."""

import uuid
from typing import List, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=200)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class PrincipalResponse(BaseModel):
    id: Optional[uuid.UUID] = None
    email: str
    full_name: str
    roles: List[str]
    primary_role: str
    role_label: str


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=8, max_length=200)
    full_name: str = Field(..., min_length=1, max_length=200)
    applicant_type: Optional[str] = None
    institution: Optional[str] = Field(None, max_length=300)
    phone: Optional[str] = Field(None, max_length=50)
