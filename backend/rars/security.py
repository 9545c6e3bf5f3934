"""
HTTP hardening and the error surface of the RARS API.

- slowapi rate limiting keyed on the client IP (stricter on login and the
  public verification endpoint)
- one request-context middleware: request ids, body size cap, security headers
- JSON handlers for typed :class:`~rars.errors.RarsError` failures, HTTP
  errors, rate-limit rejections and unexpected exceptions

Environment:
- RATE_LIMIT_PER_MINUTE (default 100), RATE_LIMIT_ENABLED (default true)
- MAX_REQUEST_SIZE_MB (default 30)
- TRUSTED_PROXY_COUNT (default 1)
- ENVIRONMENT: in 'production' 500s carry no exception detail
"""

import ipaddress
import logging
import os
import time
import uuid
from typing import Any, Callable, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from rars.errors import RarsError

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "100"))
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "false"
AUTH_RATE_LIMIT = "5/minute"

# Uploads carry whole documents, so the cap sits above the 25 MB file limit.
MAX_REQUEST_SIZE_MB = int(os.getenv("MAX_REQUEST_SIZE_MB", "30"))

IS_PRODUCTION = os.getenv("ENVIRONMENT", "development").lower() == "production"
TRUSTED_PROXY_COUNT = int(os.getenv("TRUSTED_PROXY_COUNT", "1"))

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


# =============================================================================
# Client IP + rate limiter
# =============================================================================


def _parse_ip(candidate: Optional[str]) -> Optional[str]:
    if not candidate or len(candidate) > 45:
        return None
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def get_client_ip(request: Request) -> str:
    """Client address, reading ``X-Forwarded-For`` only as far as trusted proxies reach."""
    hops = [
        hop.strip()
        for hop in request.headers.get("X-Forwarded-For", "").split(",")
        if hop.strip()
    ]
    if hops:
        index = -(TRUSTED_PROXY_COUNT + 1) if len(hops) > TRUSTED_PROXY_COUNT else 0
        forwarded = _parse_ip(hops[index])
        if forwarded:
            return forwarded
        logger.warning("Ignoring malformed X-Forwarded-For hop %r", hops[index][:50])

    peer = request.client.host if request.client else None
    return _parse_ip(peer) or peer or "unknown"


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[f"{RATE_LIMIT_PER_MINUTE}/minute"],
    storage_uri="memory://",
    enabled=RATE_LIMIT_ENABLED,
)


def rate_limit_auth():
    """Decorator for the login endpoint with strict rate limiting."""
    return limiter.limit(AUTH_RATE_LIMIT)


def request_id_of(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


# =============================================================================
# Middleware
# =============================================================================


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request id, enforce the body cap and stamp security headers."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        rejection = _check_content_length(request.headers.get("content-length"))
        if rejection is not None:
            status_code, detail, code = rejection
            response: Response = JSONResponse(
                status_code=status_code,
                content={"detail": detail, "code": code, "request_id": request_id},
            )
        else:
            started = time.perf_counter()
            response = await call_next(request)
            logger.info(
                "%s %s -> %d in %.3fs request_id=%s",
                request.method,
                request.url.path,
                response.status_code,
                time.perf_counter() - started,
                request_id,
            )

        response.headers.update(_SECURITY_HEADERS)
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        response.headers["X-Request-ID"] = request_id
        response.headers.setdefault("Cache-Control", "no-store, private")
        return response


def _check_content_length(raw: Optional[str]) -> Optional[tuple[int, str, str]]:
    if not raw:
        return None
    try:
        size = int(raw)
    except ValueError:
        return 400, "Invalid Content-Length header", "INVALID_CONTENT_LENGTH"
    if size > MAX_REQUEST_SIZE_MB * 1024 * 1024:
        return (
            413,
            f"Request body too large. Maximum size is {MAX_REQUEST_SIZE_MB}MB.",
            "REQUEST_TOO_LARGE",
        )
    return None


# =============================================================================
# Exception handlers
# =============================================================================


def _json_error(
    request: Request,
    allowed_origins: list[str],
    status_code: int,
    content: dict[str, Any],
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Error body with the request id; CORS headers are re-added for allowed origins."""
    request_id = request_id_of(request)
    merged = {"X-Request-ID": request_id}
    origin = request.headers.get("origin", "")
    if origin in allowed_origins:
        merged["Access-Control-Allow-Origin"] = origin
        merged["Access-Control-Allow-Credentials"] = "true"
    merged.update(headers or {})
    return JSONResponse(
        status_code=status_code,
        content={**content, "request_id": request_id},
        headers=merged,
    )


def _handlers(allowed_origins: list[str]) -> dict[Any, Callable]:
    async def on_rars_error(request: Request, exc: RarsError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "%s on %s: %s context=%s request_id=%s",
            exc.code,
            request.url.path,
            exc.message,
            exc.context,
            request_id_of(request),
        )
        return _json_error(
            request,
            allowed_origins,
            exc.status_code,
            {"detail": exc.message, "code": exc.code},
        )

    async def on_http_error(request: Request, exc: HTTPException) -> JSONResponse:
        if exc.status_code in (401, 403):
            logger.warning(
                "Access denied (%d) for %s on %s",
                exc.status_code,
                get_client_ip(request),
                request.url.path,
            )
        return _json_error(
            request,
            allowed_origins,
            exc.status_code,
            {"detail": exc.detail},
            headers=exc.headers,
        )

    async def on_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.warning(
            "Rate limit exceeded by %s on %s", get_client_ip(request), request.url.path
        )
        return _json_error(
            request,
            allowed_origins,
            429,
            {
                "detail": "Rate limit exceeded. Please slow down your requests.",
                "code": "RATE_LIMIT_EXCEEDED",
            },
            headers={"Retry-After": "60"},
        )

    async def on_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled %s on %s request_id=%s",
            type(exc).__name__,
            request.url.path,
            request_id_of(request),
            exc_info=exc,
        )
        if IS_PRODUCTION:
            content = {
                "detail": "An internal server error occurred. Please try again later.",
                "code": "INTERNAL_ERROR",
            }
        else:
            content = {"detail": str(exc), "error_type": type(exc).__name__}
        return _json_error(request, allowed_origins, 500, content)

    return {
        RarsError: on_rars_error,
        HTTPException: on_http_error,
        RateLimitExceeded: on_rate_limited,
        Exception: on_unexpected,
    }


# =============================================================================
# Setup
# =============================================================================


def setup_security(app: FastAPI, allowed_origins: list[str]) -> None:
    """Install the limiter, the request-context middleware and error handlers."""
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    for exc_class, handler in _handlers(allowed_origins).items():
        app.add_exception_handler(exc_class, handler)

    logger.info(
        "Security configured: rate_limit=%d/min enabled=%s max_request=%dMB production=%s",
        RATE_LIMIT_PER_MINUTE,
        RATE_LIMIT_ENABLED,
        MAX_REQUEST_SIZE_MB,
        IS_PRODUCTION,
    )
