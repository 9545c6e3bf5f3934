"""Pydantic schemas for SYSTEM_ADMIN user, settings and audit endpoints."""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    applicant_type: Optional[str] = None
    institution: Optional[str] = None
    is_active: bool
    roles: List[str] = []
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int


class CreateUserRequest(BaseModel):
    email: str = Field(..., max_length=320)
    full_name: str = Field(..., min_length=1, max_length=200)
    roles: List[str] = Field(..., min_length=1)
    password: Optional[str] = Field(None, min_length=8, max_length=200)


class CreateUserResponse(UserResponse):
    # Only set when the server chose the password.
    generated_password: Optional[str] = None


class UpdateUserRequest(BaseModel):
    full_name: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None


class SetRolesRequest(BaseModel):
    roles: List[str] = Field(..., min_length=1)


class ResetPasswordRequest(BaseModel):
    new_password: str = Field(..., min_length=8, max_length=200)


class SettingResponse(BaseModel):
    key: str
    value: Any
    description: Optional[str] = None
    is_default: bool = False
    updated_at: Optional[datetime] = None


class SettingUpdate(BaseModel):
    value: Any
    description: Optional[str] = None


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    entity_type: str
    entity_id: str
    action: str
    before_json: Optional[dict[str, Any]] = None
    after_json: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
