"""Registration, login and current-principal router."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rars.auth import authenticate_user, create_access_token
from rars.database import get_db
from rars.deps import _safe_error, get_current_principal
from rars.errors import UpstreamFailure
from rars.models.admin_models import UserResponse
from rars.models.auth_models import (
    LoginRequest,
    PrincipalResponse,
    RegisterRequest,
    TokenResponse,
)
from rars.models.enums import Role
from rars.permissions import Principal, primary_role, role_label
from rars.security import rate_limit_auth
from rars.services.user_service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["auth"])


@router.post(
    "/auth/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
@rate_limit_auth()
async def register(
    request: Request,
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Self-service sign-up; the new profile holds the APPLICANT role only."""
    try:
        profile = await UserService.register(
            db,
            body.email,
            body.password,
            body.full_name,
            applicant_type=body.applicant_type,
            institution=body.institution,
            phone=body.phone,
        )
        await db.commit()
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("registration", e)) from e
    return UserResponse.model_validate(profile).model_copy(
        update={"roles": [Role.APPLICANT.value]}
    )


@router.post("/auth/login", response_model=TokenResponse)
@rate_limit_auth()
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Exchange e-mail and password for a bearer token."""
    try:
        profile = await authenticate_user(db, body.email, body.password)
    except SQLAlchemyError as e:
        raise UpstreamFailure(_safe_error("signing in", e)) from e

    if profile is None:
        logger.info("Failed login for %s", body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return TokenResponse(access_token=create_access_token(profile.id, profile.email))


@router.get("/auth/me", response_model=PrincipalResponse)
async def me(principal: Principal = Depends(get_current_principal)):
    """The caller with every role held; ``primary_role`` is for display only."""
    return PrincipalResponse(
        id=principal.id,
        email=principal.email,
        full_name=principal.full_name,
        roles=sorted(role.value for role in principal.roles),
        primary_role=primary_role(principal.roles).value,
        role_label=role_label(principal.roles),
    )
