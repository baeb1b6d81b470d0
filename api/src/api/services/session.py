"""Session resolution and sign-out against the auth provider."""

from __future__ import annotations

import logging

from fastapi import Request, Response
from photovault.config import get_settings

from api.errors import UpstreamUnavailable
from api.services import auth_provider
from api.services.auth_provider import Principal

logger = logging.getLogger(__name__)

# Cookies written by the provider's browser client, e.g. sb-<ref>-auth-token(.0)
PROVIDER_COOKIE_PREFIX = "sb-"
CLEAR_SITE_DATA = '"cookies", "storage"'


def _session_cookie(request: Request) -> str | None:
    token = request.cookies.get(get_settings().session_cookie_name, "").strip()
    return token or None


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def extract_token(request: Request) -> str | None:
    """Session cookie first, then an Authorization bearer header."""
    return _session_cookie(request) or _bearer_token(request)


def uses_cookie_auth(request: Request) -> bool:
    """Whether ambient browser cookies authenticate this request.

    Mirrors ``extract_token``: a session cookie wins over a bearer header, so a
    request carrying both is cookie-authenticated. A refresh cookie alone
    also counts.
    """
    if _session_cookie(request):
        return True
    if _bearer_token(request):
        return False
    return bool(request.cookies.get(get_settings().refresh_cookie_name, "").strip())


async def resolve(request: Request) -> Principal | None:
    """Resolve the caller's principal; None when there is no valid session.

    Provider outages propagate as UpstreamUnavailable.
    """
    token = extract_token(request)
    if not token:
        return None
    return await auth_provider.verify_token(token)


def credential_cookie_names(request: Request) -> list[str]:
    settings = get_settings()
    own = {
        settings.session_cookie_name,
        settings.refresh_cookie_name,
        settings.csrf_cookie_name,
    }
    return sorted(
        name
        for name in request.cookies
        if name in own or name.startswith(PROVIDER_COOKIE_PREFIX)
    )


async def logout(request: Request, response: Response) -> bool:
    """Sign out; always succeeds. Returns whether a session was present."""
    token = extract_token(request)
    if token:
        try:
            await auth_provider.sign_out(token)
        except UpstreamUnavailable as exc:
            logger.warning("Provider sign-out failed, clearing local session anyway: %s", exc)

    cookie_names = credential_cookie_names(request)
    for name in cookie_names:
        response.delete_cookie(key=name, path="/")
    if token or cookie_names:
        response.headers["Clear-Site-Data"] = CLEAR_SITE_DATA
    return token is not None
