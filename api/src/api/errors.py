"""Application error taxonomy and the response envelope."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class PhotoVaultError(Exception):
    """Base for errors that map to a specific HTTP status."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "An unexpected error occurred", **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)


class ValidationError(PhotoVaultError):
    status_code = 400
    code = "validation_error"


class Unauthenticated(PhotoVaultError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Authentication required", **context: Any):
        super().__init__(message, **context)


class Forbidden(PhotoVaultError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Forbidden", **context: Any):
        super().__init__(message, **context)


class NotProvisioned(Forbidden):
    code = "not_provisioned"

    def __init__(self, message: str = "Profile not provisioned", **context: Any):
        super().__init__(message, **context)


class NotFound(PhotoVaultError):
    status_code = 404
    code = "not_found"

    def __init__(self, message: str = "Not found", **context: Any):
        super().__init__(message, **context)


class Conflict(PhotoVaultError):
    status_code = 409
    code = "conflict"


class UpstreamUnavailable(PhotoVaultError):
    """A collaborator (auth provider, object store) could not be reached."""

    status_code = 503
    code = "upstream_unavailable"

    def __init__(self, message: str = "Upstream service unavailable", **context: Any):
        super().__init__(message, **context)


def ok(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": data}


def error_body(code: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": {"code": code, "message": message}}


_HTTP_CODES = {
    400: "validation_error",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    413: "payload_too_large",
    429: "rate_limited",
    503: "upstream_unavailable",
}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PhotoVaultError)
    async def handle_app_error(request: Request, exc: PhotoVaultError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(_HTTP_CODES.get(exc.status_code, "error"), message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if location:
            message = f"{location}: {message}"
        return JSONResponse(status_code=400, content=error_body("validation_error", message))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body("internal_error", "An unexpected error occurred"),
        )
