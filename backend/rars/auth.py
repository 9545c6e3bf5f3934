"""JWT authentication for RARS.

Passwords are verified with bcrypt against ``profiles.hashed_password``.
Tokens are signed with HS256 via python-jose and carry the profile id and
email.  Role memberships are always loaded fresh from ``user_roles`` so a
revoked role takes effect on the next request.
"""

import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from dotenv import load_dotenv
from fastapi import HTTPException, status
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rars.models.db.user import Profile, UserRole
from rars.models.enums import Role
from rars.permissions import Principal

load_dotenv()

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JWT configuration
# ---------------------------------------------------------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "rars-dev-secret-change-in-production")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "12"))


# ---------------------------------------------------------------------------
# Password hashing (direct bcrypt)
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def create_access_token(user_id: uuid.UUID | str, email: str) -> str:
    """Create a signed JWT containing the profile id and email."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "email": email,
        "exp": now + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Validate *token* and return its claims.

    Raises:
        HTTPException: 401 when the token is malformed, expired or has no subject.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return payload


# ---------------------------------------------------------------------------
# Profile lookups
# ---------------------------------------------------------------------------
async def authenticate_user(
    db: AsyncSession, email: str, password: str
) -> Profile | None:
    """Return the active profile for *email* if *password* matches, else ``None``."""
    result = await db.execute(
        select(Profile).where(Profile.email == email.lower().strip())
    )
    profile = result.scalar_one_or_none()
    if profile is None or not profile.is_active or not profile.hashed_password:
        return None
    if not verify_password(password, profile.hashed_password):
        return None
    return profile


async def load_roles(db: AsyncSession, user_id: uuid.UUID) -> frozenset[Role]:
    result = await db.execute(select(UserRole.role).where(UserRole.user_id == user_id))
    roles = set()
    for (value,) in result:
        try:
            roles.add(Role(value))
        except ValueError:
            logger.warning("Ignoring unknown role %r for user %s", value, user_id)
    return frozenset(roles)


async def load_principal(db: AsyncSession, user_id: uuid.UUID | str) -> Principal | None:
    """Build the :class:`Principal` for *user_id*, or ``None`` if unknown/inactive."""
    try:
        profile_id = uuid.UUID(str(user_id))
    except ValueError:
        return None

    profile = await db.get(Profile, profile_id)
    if profile is None or not profile.is_active:
        return None

    return Principal(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        roles=await load_roles(db, profile.id),
    )
