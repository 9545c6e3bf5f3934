"""SYSTEM_ADMIN endpoints: users and roles, runtime settings, audit trail.

Role checks live in the services; every route here only needs a signed-in
principal and lets :class:`~rars.errors.Unauthorized` become a 403.
"""

import logging
import uuid
from typing import Iterable, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.auth import load_roles
from rars.database import get_db
from rars.deps import _safe_error, get_current_principal
from rars.errors import UpstreamFailure
from rars.models.admin_models import (
    AuditLogResponse,
    CreateUserRequest,
    CreateUserResponse,
    ResetPasswordRequest,
    SetRolesRequest,
    SettingResponse,
    SettingUpdate,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
)
from rars.models.db.user import Profile
from rars.models.enums import Role
from rars.permissions import Principal
from rars.services.audit_service import AuditService
from rars.services.settings_service import SettingsService
from rars.services.user_service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _user_response(profile: Profile, roles: Iterable[Role]) -> UserResponse:
    return UserResponse.model_validate(profile).model_copy(
        update={"roles": sorted(role.value for role in roles)}
    )


# ---------------------------------------------------------------------------
# Users and roles
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
async def list_users(
    search: Optional[str] = Query(None, max_length=200),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        rows = await UserService.list_users(db, principal, search)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("listing users", e)) from e
    return UserListResponse(
        users=[_user_response(profile, roles) for profile, roles in rows],
        total=len(rows),
    )


@router.post(
    "/users", response_model=CreateUserResponse, status_code=status.HTTP_201_CREATED
)
async def create_user(
    body: CreateUserRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Create an account; a generated password is returned once when none is given."""
    try:
        profile, generated = await UserService.create_user(
            db, principal, body.email, body.full_name, body.roles, body.password
        )
        await db.commit()
        roles = await load_roles(db, profile.id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("creating user", e)) from e
    return CreateUserResponse(
        **_user_response(profile, roles).model_dump(),
        generated_password=generated,
    )


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: uuid.UUID,
    body: UpdateUserRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        profile = await UserService.update_user(
            db, principal, user_id, full_name=body.full_name, is_active=body.is_active
        )
        await db.commit()
        roles = await load_roles(db, user_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("updating user", e)) from e
    return _user_response(profile, roles)


@router.put("/users/{user_id}/roles", response_model=UserResponse)
async def set_user_roles(
    user_id: uuid.UUID,
    body: SetRolesRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Replace the user's role set; takes effect on their next request."""
    try:
        roles = await UserService.set_roles(db, principal, user_id, body.roles)
        await db.commit()
        profile = await db.get(Profile, user_id)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("updating roles", e)) from e
    return _user_response(profile, roles)


@router.post("/users/{user_id}/reset-password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password(
    user_id: uuid.UUID,
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        await UserService.reset_password(db, principal, user_id, body.new_password)
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("resetting password", e)) from e


# ---------------------------------------------------------------------------
# System settings
# ---------------------------------------------------------------------------


@router.get("/settings", response_model=list[SettingResponse])
async def list_settings(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        return await SettingsService.list_settings(db, principal)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("system settings retrieval", e)) from e


@router.put("/settings/{key}", response_model=SettingResponse)
async def update_setting(
    key: str,
    body: SettingUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        setting = await SettingsService.update_setting(
            db, principal, key, body.value, body.description
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("system setting update", e)) from e
    return SettingResponse(
        key=setting.key,
        value=setting.value,
        description=setting.description,
        updated_at=setting.updated_at,
    )


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


@router.get("/audit-logs", response_model=list[AuditLogResponse])
async def list_audit_logs(
    entity_type: Optional[str] = Query(None, max_length=50),
    entity_id: Optional[str] = Query(None, max_length=100),
    actor_id: Optional[uuid.UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Newest entries first; an entity filter returns that entity's full history."""
    try:
        rows = await AuditService.search(
            db,
            principal,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            limit=limit,
        )
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("audit log retrieval", e)) from e
    return [AuditLogResponse.model_validate(row) for row in rows]
