"""Shared dependencies for all RARS API routers.

Centralises the bearer scheme, principal resolution, the idempotency-key
header and the small error helper so that every router module can
``from rars.deps import …`` without pulling in ``main``.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from rars.auth import decode_access_token, load_principal
from rars.database import get_db
from rars.permissions import PUBLIC_PRINCIPAL, Principal

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# HTTPBearer security scheme
# ---------------------------------------------------------------------------
bearer = HTTPBearer(auto_error=False)


def _safe_error(operation: str, e: Exception) -> str:
    """Log the full exception but return a safe message without internal details."""
    logger.exception("Error during %s", operation)
    return f"{operation} failed. Please try again or contact support."


# ---------------------------------------------------------------------------
# Principal resolution
# ---------------------------------------------------------------------------
async def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve the caller; requests without a token act as the PUBLIC principal."""
    if credentials is None:
        return PUBLIC_PRINCIPAL

    claims = decode_access_token(credentials.credentials)
    principal = await load_principal(db, claims["sub"])
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


async def get_current_principal(
    principal: Principal = Depends(get_principal),
) -> Principal:
    """Like :func:`get_principal` but rejects anonymous callers with 401."""
    if not principal.is_authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def idempotency_key(
    key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
) -> Optional[str]:
    """Optional client-chosen key making a transition attempt safe to retry."""
    if key is None:
        return None
    key = key.strip()
    if not key or len(key) > 200:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Idempotency-Key must be 1-200 characters",
        )
    return key
