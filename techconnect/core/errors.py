"""
Domain error taxonomy.

Services raise these; the API layer maps them onto HTTP responses through the
exception handlers registered in ``register_exception_handlers``.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Malformed input rejected at the write boundary."""

    status_code = 422
    code = "validation_error"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    """The write collides with existing state (e.g. duplicate bid)."""

    status_code = 409
    code = "already_exists"


class StaleWriteError(ConflictError):
    """The entity changed since it was read; re-fetch and retry."""

    code = "stale_write"


class AuthorizationError(DomainError):
    status_code = 403
    code = "forbidden"


class InvalidTransitionError(DomainError):
    """A status transition not allowed from the current state."""

    status_code = 400
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: Optional[str] = None, **details: Any):
        message = message or f"Cannot transition from '{current}' to '{target}'"
        super().__init__(message, current_status=current, target_status=target, **details)
        self.current = current
        self.target = target


async def domain_error_handler(request: Request, exc: DomainError):
    logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
