"""Admin route gate.

Requests for admin pages and the admin API must carry the ``admin-session``
cookie; anything else is redirected to the admin login page with the
original path preserved. The gate only checks presence: the admin API
dependencies validate the session itself against the session store.
"""

import logging
from urllib.parse import urlencode

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import RedirectResponse

from portal.services.admin_session import SESSION_COOKIE

logger = logging.getLogger(__name__)

LOGIN_PATH = "/admin/login"

# Prefixes that require an admin session
PROTECTED_PREFIXES = [
    "/admin",
    "/api/admin",
]

# Paths reachable without a session (exact or segment-boundary match)
ALLOWED_PATHS = [
    LOGIN_PATH,
    "/admin/auth-complete",  # Pending ticket is committed from here
    "/api/auth",  # Auth endpoints handle their own authentication
]


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def is_protected(path: str) -> bool:
    """Whether a path needs an admin session cookie."""
    if any(_matches(path, allowed) for allowed in ALLOWED_PATHS):
        return False
    return any(_matches(path, prefix) for prefix in PROTECTED_PREFIXES)


def login_redirect_url(path: str) -> str:
    return f"{LOGIN_PATH}?{urlencode({'redirect': path})}"


class AdminGateMiddleware(BaseHTTPMiddleware):
    """Redirect unauthenticated admin requests to the login page."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        # CORS preflight never carries cookies
        if request.method == "OPTIONS" or not is_protected(path):
            return await call_next(request)

        if not request.cookies.get(SESSION_COOKIE):
            logger.info(f"Admin request without session: {request.method} {path}")
            return RedirectResponse(login_redirect_url(path), status_code=307)

        return await call_next(request)
