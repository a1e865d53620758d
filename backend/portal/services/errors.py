"""Authentication error taxonomy shared by the auth services."""

from datetime import datetime


class AuthError(Exception):
    """Base authentication error."""

    pass


class NotFoundError(AuthError):
    """Identity has no matching record."""

    pass


class ExpiredError(AuthError):
    """Token or session is past its validity."""

    pass


class InvalidError(AuthError):
    """Malformed input or mismatched secret."""

    pass


class LockedError(AuthError):
    """Lockout is active for the identity.

    Carries the remaining lock time; it is the one failure detail that is
    shown to the caller.
    """

    def __init__(self, remaining_minutes: int, locked_until: datetime | None = None):
        super().__init__(f"Account locked. Try again in {remaining_minutes} minutes.")
        self.remaining_minutes = remaining_minutes
        self.locked_until = locked_until


class CredentialStoreError(AuthError):
    """The credential store failed; details are logged, never returned."""

    pass


class SecretNotFoundError(NotFoundError):
    """No record matches both the identity and the presented secret."""

    pass


class SecretExpiredError(ExpiredError):
    """The presented secret matches but its expiry has passed."""

    pass


class SessionNotFoundError(NotFoundError):
    """No admin session exists for the identifier."""

    pass


class SessionExpiredError(ExpiredError):
    """The admin session existed but had expired; it has been evicted."""

    pass


class TicketError(InvalidError):
    """A pending session ticket is malformed, forged or stale."""

    pass


class PasswordPolicyError(InvalidError):
    """A chosen password is rejected by the password policy."""

    pass
