"""Client Portal services."""

from portal.services.admin_auth import AdminAuthService
from portal.services.admin_session import AdminSessionManager, get_admin_session_store
from portal.services.client_auth import ClientAuthService
from portal.services.client_session import ClientSessionManager
from portal.services.credential_store import CredentialStore
from portal.services.email import EmailService
from portal.services.lockout import LockoutGuard, LockoutPolicy
from portal.services.setup_token import SetupTokenIssuer

__all__ = [
    "AdminAuthService",
    "AdminSessionManager",
    "ClientAuthService",
    "ClientSessionManager",
    "CredentialStore",
    "EmailService",
    "LockoutGuard",
    "LockoutPolicy",
    "SetupTokenIssuer",
    "get_admin_session_store",
]
