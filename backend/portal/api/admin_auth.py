"""Admin authentication endpoints.

Login is split in two: a successful password check returns a pending
ticket and the URL that completes the login, and the completion call turns
the ticket into a server-held session cookie.
"""

import logging
import time
from collections import defaultdict
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from portal.api.deps import clear_admin_cookie_headers, get_admin_session_manager
from portal.core import get_db
from portal.core.request_utils import get_client_ip
from portal.schemas.auth import (
    AdminCompleteRequest,
    AdminLoginRequest,
    AdminLoginResponse,
    AdminSessionResponse,
    AdminSetupRequest,
    AdminSetupResponse,
    AdminStatusResponse,
    MessageResponse,
)
from portal.services.admin_auth import (
    AdminAuthService,
    AdminExistsError,
    InvalidCredentialsError,
    UserInactiveError,
    identity_for,
)
from portal.services.admin_session import SESSION_COOKIE, AdminSession, AdminSessionManager
from portal.services.errors import ExpiredError, NotFoundError, TicketError

logger = logging.getLogger(__name__)

# Rate limiting for login attempts
_login_attempts: dict[str, list[float]] = defaultdict(list)
_LOGIN_WINDOW = 60  # 1-minute window
_LOGIN_MAX_ATTEMPTS = 5  # Max login attempts per window

COMPLETE_PATH = "/admin/auth-complete"
DEFAULT_REDIRECT = "/admin"


def _check_login_rate_limit(client_ip: str) -> None:
    """Check if a client IP has exceeded the login attempt rate limit."""
    now = time.monotonic()
    attempts = _login_attempts[client_ip]
    _login_attempts[client_ip] = [t for t in attempts if now - t < _LOGIN_WINDOW]
    if len(_login_attempts[client_ip]) >= _LOGIN_MAX_ATTEMPTS:
        logger.warning(
            "Admin login rate limit exceeded for %s",
            client_ip,
            extra={"event": "login_throttled", "client_ip": client_ip},
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
        )


def _record_login_attempt(client_ip: str) -> None:
    """Record a failed login attempt for rate limiting."""
    _login_attempts[client_ip].append(time.monotonic())


def safe_redirect(target: str | None) -> str:
    """Only same-site absolute paths may be used as post-login targets."""
    if not target or not target.startswith("/") or target.startswith("//") or "\\" in target:
        return DEFAULT_REDIRECT
    return target


def _session_response(session: AdminSession, manager: AdminSessionManager) -> AdminSessionResponse:
    return AdminSessionResponse(
        username=session.user.username,
        display_name=session.user.display_name,
        expires_at=session.expires_at,
        expires_in=session.expires_in(manager.clock()),
    )


router = APIRouter(prefix="/auth/admin", tags=["admin-auth"])


def get_admin_auth_service(db: AsyncSession = Depends(get_db)) -> AdminAuthService:
    """Dependency to get admin auth service."""
    return AdminAuthService(db)


@router.get("/status", response_model=AdminStatusResponse)
async def get_admin_status(
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> AdminStatusResponse:
    """Whether the first administrator still has to be created."""
    admin_exists = await auth_service.admin_exists()
    return AdminStatusResponse(setup_required=not admin_exists)


@router.post(
    "/setup",
    response_model=AdminSetupResponse,
    status_code=status.HTTP_201_CREATED,
)
async def setup_admin(
    request: AdminSetupRequest,
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> AdminSetupResponse:
    """Create the initial admin user.

    This endpoint only works when no admin user exists.
    Returns 409 Conflict if an admin already exists.
    """
    try:
        user = await auth_service.create_admin_user(
            username=request.username,
            password=request.password,
            display_name=request.display_name,
        )
    except AdminExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return AdminSetupResponse(message="Admin user created successfully", username=user.username)


@router.post("/login", response_model=AdminLoginResponse)
async def login(
    request: AdminLoginRequest,
    http_request: Request,
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
    manager: AdminSessionManager = Depends(get_admin_session_manager),
) -> AdminLoginResponse:
    """Check admin credentials and hand out a pending session ticket.

    Rate limited to 5 failed attempts per minute per IP.
    """
    client_ip = get_client_ip(http_request)
    _check_login_rate_limit(client_ip)

    try:
        user = await auth_service.authenticate(
            username=request.username,
            password=request.password,
        )
    except InvalidCredentialsError as e:
        _record_login_attempt(client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        ) from e
    except UserInactiveError as e:
        _record_login_attempt(client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is deactivated",
        ) from e

    ticket = manager.create_ticket(identity_for(user))
    query = urlencode({"token": ticket, "redirect": safe_redirect(request.redirect)})
    logger.info(f"Admin credentials accepted: {user.username}")
    return AdminLoginResponse(
        ticket=ticket,
        complete_url=f"{COMPLETE_PATH}?{query}",
        expires_in=int(manager.ticket_ttl.total_seconds()),
    )


@router.post("/complete", response_model=AdminSessionResponse)
async def complete_login(
    request: AdminCompleteRequest,
    response: Response,
    manager: AdminSessionManager = Depends(get_admin_session_manager),
) -> AdminSessionResponse:
    """Commit a pending ticket into a session and set the session cookie."""
    try:
        session = await manager.commit(request.token)
    except TicketError as e:
        logger.warning(f"Rejected admin login ticket: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired login ticket",
        ) from e

    manager.set_cookie(response, session)
    return _session_response(session, manager)


@router.get("/session", response_model=AdminSessionResponse)
async def get_session(
    http_request: Request,
    manager: AdminSessionManager = Depends(get_admin_session_manager),
) -> AdminSessionResponse | JSONResponse:
    """The current admin session, or 401 with the cookie cleared."""
    try:
        session = await manager.validate(http_request.cookies.get(SESSION_COOKIE))
    except (NotFoundError, ExpiredError) as e:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(e)},
            headers=clear_admin_cookie_headers(manager),
        )
    return _session_response(session, manager)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    http_request: Request,
    response: Response,
    manager: AdminSessionManager = Depends(get_admin_session_manager),
) -> MessageResponse:
    """Revoke the current admin session. Logging out twice is harmless."""
    if await manager.revoke(http_request.cookies.get(SESSION_COOKIE)):
        logger.info("Admin session revoked")
    manager.clear_cookie(response)
    return MessageResponse(message="Logged out successfully")
