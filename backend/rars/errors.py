"""Typed errors raised by the lifecycle services.

Routers do not translate these one by one; :func:`rars.security.setup_security`
registers a handler that turns any :class:`RarsError` into a JSON response
carrying ``detail``, ``code`` and the request id.
"""

from fastapi import status


class RarsError(Exception):
    """Base class for every expected, user-facing failure."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "RARS_ERROR"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class Unauthorized(RarsError):
    """Principal lacks the required role or ownership."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "UNAUTHORIZED"


class InvalidTransition(RarsError):
    """Guard failed or the application is in the wrong source state."""

    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class NotFound(RarsError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ConflictingVersion(RarsError):
    """Document version could not be assigned after repeated conflicts."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICTING_VERSION"


class UpstreamFailure(RarsError):
    """Relational store, object store or e-mail relay call failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "UPSTREAM_FAILURE"


class ValidationFailure(RarsError):
    """Malformed input, e.g. a missing title or reason."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_FAILURE"
