"""
RARS API - FastAPI backend for the Research Approval & Repository System
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rars import __version__

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

from rars import database  # noqa: E402
from rars.routers import (  # noqa: E402
    admin,
    applications,
    auth,
    decisions,
    documents,
    extensions,
    health,
    notifications,
    repository,
    reviews,
)
from rars.security import setup_security  # noqa: E402

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    auto_create = os.getenv("RARS_AUTO_CREATE_TABLES", "false").strip().lower() in (
        "1",
        "true",
        "yes",
    )
    if auto_create and ENVIRONMENT != "production" and database.engine is not None:
        await database.create_all()
        logger.info("Database tables created (RARS_AUTO_CREATE_TABLES)")
    logger.info("RARS API started")
    yield
    if database.engine is not None:
        await database.engine.dispose()
    logger.info("RARS API shutdown complete")


app = FastAPI(
    title="RARS API",
    description="Research Approval & Repository System",
    version=__version__,
    lifespan=lifespan,
)

# =============================================================================
# CORS Configuration
# =============================================================================
# Production accepts HTTPS origins only; development defaults to localhost.

if ENVIRONMENT == "production":
    default_origins = ""
else:
    default_origins = "http://localhost:3000,http://localhost:5173"

ALLOWED_ORIGINS = []
for origin in os.getenv("ALLOWED_ORIGINS", default_origins).split(","):
    origin = origin.strip()
    if not origin:
        continue
    if ENVIRONMENT == "production" and not origin.startswith("https://"):
        logger.warning("[CORS] Rejecting non-HTTPS origin in production: %s", origin)
        continue
    ALLOWED_ORIGINS.append(origin)

if not ALLOWED_ORIGINS:
    raise ValueError("CORS configuration error: No valid allowed origins configured")

logger.info("[CORS] Environment: %s, allowed origins: %s", ENVIRONMENT, ALLOWED_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Idempotency-Key", "X-Request-ID"],
)

# Must run after CORS middleware is added
setup_security(app, ALLOWED_ORIGINS)

# =============================================================================
# Routers
# =============================================================================
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(applications.router)
app.include_router(documents.router)
app.include_router(reviews.router)
app.include_router(decisions.router)
app.include_router(extensions.router)
app.include_router(repository.router)
app.include_router(notifications.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
