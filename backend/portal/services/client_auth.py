"""Client login and password lifecycle.

Ties the credential store, lockout guard and setup-secret issuer together
into the flows the client API exposes: login, pre-setup verification,
default-password replacement, link/OTP setup and forgot-password reset.
"""

import hashlib
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import Settings, settings
from portal.core.timeutils import ensure_utc, utc_now
from portal.models import ClientCredential, OnboardingStatus
from portal.services.client_session import ClientAccount
from portal.services.credential_store import CredentialStore
from portal.services.errors import ExpiredError, InvalidError, NotFoundError, PasswordPolicyError
from portal.services.lockout import LockoutGuard, LockoutPolicy
from portal.services.passwords import hash_password, password_policy_errors, verify_password
from portal.services.setup_token import SetupTokenIssuer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginResult:
    accounts: list[ClientCredential]
    requires_setup: bool

    @property
    def session_accounts(self) -> list[ClientAccount]:
        return [
            ClientAccount(client_id=account.client_id, client_code=account.client_code)
            for account in self.accounts
        ]


@dataclass(frozen=True)
class PasswordStatus:
    client_name: str | None
    is_password_set: bool
    onboarding_status: str | None


def _hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode()).hexdigest()


class ClientAuthService:
    """Service for client authentication operations."""

    def __init__(
        self,
        db: AsyncSession,
        config: Settings = settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.clock = clock
        self.store = CredentialStore(db)
        self.guard = LockoutGuard(self.store, LockoutPolicy.from_settings(config), clock)
        self.issuer = SetupTokenIssuer(self.store, config, clock)

    # --- Helpers ---

    def check_new_password(self, new_password: str, confirm_password: str | None = None) -> None:
        """Raise PasswordPolicyError when a new password is unacceptable."""
        if confirm_password is not None and new_password != confirm_password:
            raise PasswordPolicyError("Passwords do not match")
        errors = password_policy_errors(new_password, self.config.default_client_password)
        if errors:
            raise PasswordPolicyError(errors[0])

    async def _accounts_for(self, email: str) -> list[ClientCredential]:
        accounts = await self.store.list_by_email(email)
        if not accounts:
            raise NotFoundError("Email address not found")
        return accounts

    async def verify_credentials(self, email: str, password: str) -> list[ClientCredential]:
        """Check a password under lockout protection.

        Returns every account of the email on success. Raises NotFoundError
        for an unknown email, LockedError while (or as soon as) the identity
        is locked, and InvalidError for a wrong password.
        """
        accounts = await self.store.list_by_email(email)
        if not accounts:
            # Same hashing cost as a real comparison
            verify_password(password, None)
            raise NotFoundError("Email address not found")

        credential = accounts[0]
        # No comparison at all while locked
        self.guard.check(credential).raise_if_locked()

        valid = verify_password(password, credential.password_hash)
        outcome = await self.guard.check_and_record_attempt(credential, valid)
        if not valid:
            outcome.raise_if_locked()
            logger.info(f"Failed password check ({outcome.attempts} consecutive)")
            raise InvalidError("Invalid credentials")
        return accounts

    async def _store_user_password(self, email: str, new_password: str) -> LoginResult:
        updated = await self.store.complete_password_setup(
            email, hash_password(new_password), self.clock()
        )
        logger.info(f"Password setup completed for {updated} account(s)")
        accounts = await self.store.list_by_email(email)
        return LoginResult(accounts=accounts, requires_setup=False)

    # --- Flows ---

    async def login(self, email: str, password: str) -> LoginResult:
        """Authenticate a client by email and password."""
        accounts = await self.verify_credentials(email, password)
        requires_setup = not accounts[0].has_user_password
        return LoginResult(accounts=accounts, requires_setup=requires_setup)

    async def password_status(self, email: str) -> PasswordStatus:
        """Whether the identity has personalised its password (reports locks)."""
        accounts = await self._accounts_for(email)
        credential = accounts[0]
        self.guard.check(credential).raise_if_locked()
        return PasswordStatus(
            client_name=credential.client_name,
            is_password_set=(
                credential.has_user_password
                and credential.onboarding_status == OnboardingStatus.COMPLETED
            ),
            onboarding_status=credential.onboarding_status,
        )

    async def verify_for_setup(self, email: str, current_password: str) -> tuple[bool, str | None]:
        """Verify the current password before setup.

        Returns (requires_setup, client_name).
        """
        accounts = await self.verify_credentials(email, current_password)
        credential = accounts[0]
        requires_setup = (
            not credential.has_user_password
            or credential.onboarding_status == OnboardingStatus.PENDING
        )
        return requires_setup, credential.client_name

    async def complete_password_setup(
        self,
        email: str,
        current_password: str,
        new_password: str,
        confirm_password: str,
    ) -> LoginResult:
        """Replace the current (usually default) password with a chosen one."""
        self.check_new_password(new_password, confirm_password)
        await self.verify_credentials(email, current_password)
        return await self._store_user_password(email, new_password)

    async def complete_secret_setup(
        self,
        identity: str,
        presented: str,
        new_password: str,
        confirm_password: str,
    ) -> LoginResult:
        """Set the first password using a valid link token or OTP.

        The secret is validated again here; consuming it happens in the same
        write that stores the password.
        """
        self.check_new_password(new_password, confirm_password)
        credential = await self.issuer.validate_token(identity, presented)
        if not credential.email:
            raise InvalidError("No email address found for this client")
        logger.info(f"Setup secret accepted for client {credential.client_code}")
        return await self._store_user_password(credential.email, new_password)

    # --- Forgot password ---

    async def request_password_reset(self, email: str) -> tuple[ClientCredential, str] | None:
        """Create a reset token when the email is known.

        Returns (credential, raw_token) or None; callers must respond the same
        way in both cases.
        """
        credential = await self.store.get_by_email(email)
        if credential is None:
            return None
        raw_token = secrets.token_hex(32)
        expires_at = self.clock() + timedelta(minutes=self.config.reset_token_ttl_minutes)
        await self.store.create_reset_token(email, _hash_reset_token(raw_token), expires_at)
        return credential, raw_token

    async def reset_password(self, raw_token: str, new_password: str) -> None:
        """Consume a reset token and store the new password."""
        self.check_new_password(new_password)
        token = await self.store.get_reset_token(_hash_reset_token(raw_token))
        if token is None:
            raise NotFoundError("Invalid or expired token")
        if token.used:
            raise InvalidError("Token already used")
        if self.clock() > ensure_utc(token.expires_at):
            raise ExpiredError("Invalid or expired token")

        updated = await self.store.consume_reset_token(
            token.email, hash_password(new_password), self.clock()
        )
        if updated == 0:
            raise NotFoundError("No user found for token")
        logger.info(f"Password reset completed for {updated} account(s)")
