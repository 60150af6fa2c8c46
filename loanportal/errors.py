"""Typed failures for the loan workflow, mapped to HTTP envelopes in one place.

Use cases raise these; routers never build HTTPException for domain failures.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class LoanPortalError(Exception):
    http_status = 500
    code = "internal_error"
    category = "internal"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        field: Optional[str] = None,
        current_state: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.field = field
        self.current_state = current_state

    def to_response(self) -> dict:
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "category": self.category,
        }
        if self.field:
            body["field"] = self.field
        if self.current_state is not None:
            body["current_state"] = self.current_state
        return {"error": body}


# ---------------- 400-level ----------------

class ValidationError(LoanPortalError):
    """Malformed input, rejected before any mutation."""
    http_status = 400
    code = "validation_error"
    category = "validation"

    def __init__(self, message: str, field: str, *, code: Optional[str] = None):
        super().__init__(message, code=code, field=field)


class AuthenticationError(LoanPortalError):
    http_status = 401
    code = "not_authenticated"
    category = "authentication"


class AuthorizationError(LoanPortalError):
    """Caller lacks the role or ownership the operation needs."""
    http_status = 403
    code = "forbidden"
    category = "authorization"


class DependencyError(LoanPortalError):
    """A referenced identity, profile, asset or request does not exist."""
    http_status = 404
    code = "not_found"
    category = "resource_not_found"

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} '{resource_id}' not found", code=f"{resource}_not_found")
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(LoanPortalError):
    """State-machine or uniqueness precondition violated."""
    http_status = 409
    code = "conflict"
    category = "conflict"


# ---------------- handlers ----------------

def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(LoanPortalError)
    async def loanportal_error_handler(request: Request, exc: LoanPortalError):
        logger.info("[API] %s %s -> %s %s", request.method, request.url.path, exc.http_status, exc.code)
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.warning("[API] validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": {
                    "code": "validation_error",
                    "message": "Invalid request data",
                    "category": "validation",
                    "details": [
                        {
                            "field": ".".join(str(loc) for loc in e["loc"]),
                            "message": e["msg"],
                            "type": e["type"],
                        }
                        for e in exc.errors()
                    ],
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("[API] unhandled exception on %s: %r", request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "internal_error",
                    "message": "An unexpected error occurred",
                    "category": "internal",
                }
            },
        )
