"""Health-check router."""

import logging
import os
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rars import __version__, database

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check"""
    return {"status": "ok", "message": "RARS API is running"}


@router.get("/api/v1/health")
async def health_check():
    """Detailed health check with database and integration status."""
    degraded = []

    db_state = "not_configured"
    if database.async_session_factory is not None:
        try:
            async with database.async_session_factory() as session:
                await session.execute(text("SELECT 1"))
            db_state = "connected"
        except SQLAlchemyError as e:
            logger.warning("Health check database query failed: %s", e)
            db_state = "unavailable"
    if db_state != "connected":
        degraded.append("database")

    if not os.getenv("AZURE_STORAGE_CONNECTION_STRING"):
        degraded.append("document_storage")
    if not os.getenv("SMTP_HOST"):
        degraded.append("email")

    return {
        "status": "healthy" if db_state == "connected" else "degraded",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "database": db_state,
            "storage": "configured" if "document_storage" not in degraded else "unconfigured",
            "email": "smtp" if "email" not in degraded else "stub",
        },
        "degraded": degraded if degraded else None,
    }
