"""CSRF protection for cookie-authenticated unsafe requests."""

from __future__ import annotations

from urllib.parse import urlparse

from fastapi import Request, status
from fastapi.responses import JSONResponse
from photovault.config import get_settings
from starlette.middleware.base import BaseHTTPMiddleware

from api.dependencies import CSRF_HEADER_NAME
from api.errors import error_body
from api.services import session as session_service

UNSAFE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
# Server-to-server callers authenticate with signatures or shared secrets.
EXEMPT_PATH_PREFIXES = ("/v1/stripe/webhook", "/v1/cron/")


def _origin(url: str) -> str | None:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def _allowed_origins() -> set[str]:
    settings = get_settings()
    allowed = {_origin(settings.site_url), _origin(settings.api_url)}
    return {entry for entry in allowed if entry}


def _request_origin(request: Request) -> str | None:
    header = request.headers.get("origin", "").strip()
    if header:
        return _origin(header)
    referer = request.headers.get("referer", "").strip()
    if referer:
        return _origin(referer)
    return None


def _forbidden(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content=error_body("csrf_failed", message),
    )


class CSRFMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        method = request.method.upper()
        if method not in UNSAFE_METHODS:
            return await call_next(request)

        path = request.url.path
        if any(path.startswith(prefix) for prefix in EXEMPT_PATH_PREFIXES):
            return await call_next(request)

        if not session_service.uses_cookie_auth(request):
            return await call_next(request)

        request_origin = _request_origin(request)
        if request_origin is not None and request_origin not in _allowed_origins():
            return _forbidden("Cross-site request origin is not allowed")

        cookie_token = request.cookies.get(get_settings().csrf_cookie_name, "").strip()
        header_token = request.headers.get(CSRF_HEADER_NAME, "").strip()
        if not cookie_token or not header_token or cookie_token != header_token:
            return _forbidden("Missing or invalid CSRF token")

        return await call_next(request)
