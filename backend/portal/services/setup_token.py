"""Password-setup secrets: link tokens and OTP codes.

Both presentations share one storage slot per account and one expiry rule,
so they are modelled as a single SingleUseSecret type. Validation only
reads; consuming a secret is a separate, explicit call made by the
password-setup flow once validation has succeeded.
"""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from portal.core.config import Settings, settings
from portal.core.timeutils import ensure_utc, utc_now
from portal.models import ClientCredential, OnboardingStatus
from portal.services.credential_store import CredentialStore
from portal.services.errors import (
    InvalidError,
    NotFoundError,
    SecretExpiredError,
    SecretNotFoundError,
)

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 64 hex characters
OTP_DIGITS = 6


@dataclass(frozen=True)
class SingleUseSecret:
    """A setup secret and the moment it stops being valid."""

    value: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def matches(self, presented: str) -> bool:
        return secrets.compare_digest(self.value.encode(), presented.encode())

    @classmethod
    def from_credential(cls, credential: ClientCredential) -> "SingleUseSecret | None":
        """The secret held in a credential's slot, if any (expired or not)."""
        if not credential.password_setup_token or credential.password_setup_expires is None:
            return None
        return cls(
            value=credential.password_setup_token,
            expires_at=ensure_utc(credential.password_setup_expires),
        )


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def generate_otp() -> str:
    low = 10 ** (OTP_DIGITS - 1)
    return str(low + secrets.randbelow(9 * low))


def active_secret(credential: ClientCredential, now: datetime) -> SingleUseSecret | None:
    """The credential's secret if it has not expired; expired ones are inert."""
    secret = SingleUseSecret.from_credential(credential)
    if secret is None or secret.is_expired(now):
        return None
    return secret


class SetupTokenIssuer:
    """Issue and validate password-setup secrets."""

    def __init__(
        self,
        store: CredentialStore,
        config: Settings = settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.token_ttl = timedelta(hours=config.setup_token_ttl_hours)
        self.otp_ttl = timedelta(minutes=config.setup_otp_ttl_minutes)
        self.clock = clock

    async def issue_setup_token(self, client_code: str) -> tuple[ClientCredential, SingleUseSecret]:
        """Issue a link token for one account, replacing any previous secret.

        Raises NotFoundError for an unknown client code and InvalidError when
        the account has no email to deliver the link to.
        """
        credential = await self.store.get_by_client_code(client_code)
        if credential is None:
            raise NotFoundError("Client not found")
        if not credential.email:
            raise InvalidError("No email address found for this client")

        secret = SingleUseSecret(value=generate_token(), expires_at=self.clock() + self.token_ttl)
        await self.store.store_setup_secret_for_client(client_code, secret.value, secret.expires_at)
        logger.info(f"Issued setup token for client {client_code}")
        return credential, secret

    async def issue_setup_otp(self, email: str) -> tuple[ClientCredential, SingleUseSecret]:
        """Issue an OTP to every account of an email that still needs setup.

        Raises NotFoundError when the email is unknown or has already
        completed setup.
        """
        accounts = await self.store.list_by_email(email)
        eligible = [
            account
            for account in accounts
            if not account.has_user_password
            or account.onboarding_status == OnboardingStatus.PENDING
        ]
        if not eligible:
            raise NotFoundError("Email not found or password already set up")

        secret = SingleUseSecret(value=generate_otp(), expires_at=self.clock() + self.otp_ttl)
        await self.store.store_setup_secret_for_email(email, secret.value, secret.expires_at)
        logger.info(f"Issued setup OTP for {len(accounts)} account(s)")
        return eligible[0], secret

    async def validate_token(self, identity: str, presented: str) -> ClientCredential:
        """Return the account whose slot holds exactly the presented secret.

        identity is a client code or an email. Raises SecretNotFoundError when
        nothing matches and SecretExpiredError when the match has expired.
        Never writes.
        """
        if not identity or not presented:
            raise SecretNotFoundError("Invalid or expired token")

        now = self.clock()
        expired_match = False
        for credential in await self.store.list_by_identity(identity):
            secret = SingleUseSecret.from_credential(credential)
            if secret is None or not secret.matches(presented):
                continue
            if secret.is_expired(now):
                expired_match = True
                continue
            return credential

        if expired_match:
            raise SecretExpiredError("Invalid or expired token")
        raise SecretNotFoundError("Invalid or expired token")
