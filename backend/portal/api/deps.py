"""Shared FastAPI dependencies for the portal routers."""

import logging

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core import get_db
from portal.services.admin_session import (
    SESSION_COOKIE,
    AdminSession,
    AdminSessionManager,
    get_admin_session_store,
)
from portal.services.client_auth import ClientAuthService
from portal.services.client_session import ClientSession, ClientSessionManager
from portal.services.credential_store import CredentialStore
from portal.services.email import EmailService
from portal.services.errors import ExpiredError, NotFoundError
from portal.services.setup_token import SetupTokenIssuer

logger = logging.getLogger(__name__)


def get_client_auth_service(db: AsyncSession = Depends(get_db)) -> ClientAuthService:
    """Dependency to get the client auth service."""
    return ClientAuthService(db)


def get_credential_store(db: AsyncSession = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def get_setup_token_issuer(
    store: CredentialStore = Depends(get_credential_store),
) -> SetupTokenIssuer:
    return SetupTokenIssuer(store)


def get_email_service() -> EmailService:
    return EmailService()


def get_client_session_manager() -> ClientSessionManager:
    return ClientSessionManager()


def get_admin_session_manager() -> AdminSessionManager:
    return AdminSessionManager(get_admin_session_store())


def get_client_session(
    request: Request,
    manager: ClientSessionManager = Depends(get_client_session_manager),
) -> ClientSession:
    """The request's client session (anonymous when cookies are absent or invalid)."""
    return manager.validate(request)


def require_client_session(
    client_session: ClientSession = Depends(get_client_session),
) -> ClientSession:
    if not client_session.authenticated:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return client_session


def clear_admin_cookie_headers(manager: AdminSessionManager) -> dict[str, str]:
    """Set-Cookie header that expires the admin session cookie."""
    response = Response()
    manager.clear_cookie(response)
    return {"set-cookie": response.headers["set-cookie"]}


async def require_admin_session(
    request: Request,
    manager: AdminSessionManager = Depends(get_admin_session_manager),
) -> AdminSession:
    """Dependency that resolves the admin session cookie or rejects the request.

    Unknown and expired sessions both answer 401 and clear the cookie.
    """
    session_id = request.cookies.get(SESSION_COOKIE)
    try:
        return await manager.validate(session_id)
    except (NotFoundError, ExpiredError) as e:
        if session_id:
            logger.warning(f"Rejected admin session for {request.method} {request.url.path}: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers=clear_admin_cookie_headers(manager),
        ) from e
