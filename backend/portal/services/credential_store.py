"""Credential store - all reads and writes of client credential rows.

Every statement is built with SQLAlchemy expressions so values always travel
as bound parameters. Writes that must survive a rejected request (lockout
counters) and writes of secrets that are about to be emailed (setup tokens,
OTPs, reset tokens) commit immediately; the rest are flushed and committed
by the request-scoped session.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import DateTime, case, func, literal, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.models import ClientCredential, OnboardingStatus, PasswordResetToken, PasswordState
from portal.services.errors import CredentialStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptState:
    """Lockout counters as written by the store."""

    login_attempts: int
    locked_until: datetime | None


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Log database failures and surface them as CredentialStoreError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.exception(f"Credential store failure during {operation}")
        raise CredentialStoreError("Credential store unavailable") from e


class CredentialStore:
    """Keyed access to ClientCredential rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Lookups ---

    def _select(self):
        # populate_existing: rows changed by bulk UPDATEs must not be served
        # stale from the identity map
        return select(ClientCredential).execution_options(populate_existing=True)

    async def list_by_email(self, email: str) -> list[ClientCredential]:
        """All accounts sharing an email, in a stable order."""
        with _store_errors("list_by_email"):
            result = await self.db.execute(
                self._select()
                .where(ClientCredential.email == email)
                .order_by(ClientCredential.client_code)
            )
            return list(result.scalars().all())

    async def get_by_email(self, email: str) -> ClientCredential | None:
        """The representative account for an email (first by client code)."""
        accounts = await self.list_by_email(email)
        return accounts[0] if accounts else None

    async def get_by_client_code(self, client_code: str) -> ClientCredential | None:
        with _store_errors("get_by_client_code"):
            result = await self.db.execute(
                self._select().where(ClientCredential.client_code == client_code)
            )
            return result.scalar_one_or_none()

    async def list_by_identity(self, identity: str) -> list[ClientCredential]:
        """Accounts matching an identity that is either a client code or an email."""
        with _store_errors("list_by_identity"):
            result = await self.db.execute(
                self._select()
                .where(
                    or_(
                        ClientCredential.client_code == identity,
                        ClientCredential.email == identity,
                    )
                )
                .order_by(ClientCredential.client_code)
            )
            return list(result.scalars().all())

    # --- Lockout counters ---

    async def record_failed_attempt(
        self, email: str, threshold: int, lock_until: datetime
    ) -> AttemptState:
        """Atomically increment the attempt counter for every account of an email.

        The increment and the threshold comparison happen inside a single
        UPDATE, so concurrent failures each see the other's write. The lock
        timestamp is only written when the new count reaches the threshold.
        """
        new_attempts = ClientCredential.login_attempts + 1
        stmt = (
            update(ClientCredential)
            .where(ClientCredential.email == email)
            .values(
                login_attempts=new_attempts,
                locked_until=case(
                    (new_attempts >= threshold, literal(lock_until, DateTime(timezone=True))),
                    else_=ClientCredential.locked_until,
                ),
            )
            .returning(ClientCredential.login_attempts, ClientCredential.locked_until)
            .execution_options(synchronize_session=False)
        )
        with _store_errors("record_failed_attempt"):
            result = await self.db.execute(stmt)
            rows = result.all()
            await self.db.commit()

        if not rows:
            return AttemptState(login_attempts=0, locked_until=None)
        attempts, locked = max(rows, key=lambda row: row[0])
        return AttemptState(login_attempts=attempts, locked_until=locked)

    async def reset_login_attempts(self, email: str) -> None:
        """Clear the attempt counter and lock for every account of an email."""
        stmt = (
            update(ClientCredential)
            .where(ClientCredential.email == email)
            .values(login_attempts=0, locked_until=None)
            .execution_options(synchronize_session=False)
        )
        with _store_errors("reset_login_attempts"):
            await self.db.execute(stmt)
            await self.db.commit()

    # --- Setup secret slot ---

    async def store_setup_secret_for_client(
        self, client_code: str, value: str, expires_at: datetime
    ) -> int:
        """Overwrite the setup slot of one account and mark its email as sent.

        The stored onboarding status only moves forward: pending (or unset)
        becomes email_sent, anything else is left alone.
        """
        stmt = (
            update(ClientCredential)
            .where(ClientCredential.client_code == client_code)
            .values(
                password_setup_token=value,
                password_setup_expires=expires_at,
                onboarding_status=case(
                    (
                        or_(
                            ClientCredential.onboarding_status.is_(None),
                            ClientCredential.onboarding_status == OnboardingStatus.PENDING.value,
                        ),
                        OnboardingStatus.EMAIL_SENT.value,
                    ),
                    else_=ClientCredential.onboarding_status,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        with _store_errors("store_setup_secret_for_client"):
            result = await self.db.execute(stmt)
            await self.db.commit()
            return result.rowcount

    async def store_setup_secret_for_email(
        self, email: str, value: str, expires_at: datetime
    ) -> int:
        """Overwrite the setup slot of every account sharing an email."""
        stmt = (
            update(ClientCredential)
            .where(ClientCredential.email == email)
            .values(password_setup_token=value, password_setup_expires=expires_at)
            .execution_options(synchronize_session=False)
        )
        with _store_errors("store_setup_secret_for_email"):
            result = await self.db.execute(stmt)
            await self.db.commit()
            return result.rowcount

    # --- Password changes ---

    async def complete_password_setup(self, email: str, password_hash: str, now: datetime) -> int:
        """Store a user-chosen password for every account of an email.

        Consumes the setup slot, marks onboarding completed and clears any
        lockout. first_login_at is only stamped the first time.
        """
        stmt = (
            update(ClientCredential)
            .where(ClientCredential.email == email)
            .values(
                password_hash=password_hash,
                password_state=PasswordState.USER_SET.value,
                password_set_at=now,
                onboarding_status=OnboardingStatus.COMPLETED.value,
                password_setup_token=None,
                password_setup_expires=None,
                login_attempts=0,
                locked_until=None,
                first_login_at=func.coalesce(
                    ClientCredential.first_login_at, literal(now, DateTime(timezone=True))
                ),
            )
            .execution_options(synchronize_session=False)
        )
        with _store_errors("complete_password_setup"):
            result = await self.db.execute(stmt)
            await self.db.flush()
            return result.rowcount

    async def assign_default_password(self, client_code: str, password_hash: str) -> int:
        """Provision the shared default password for one account.

        Accounts whose owner already chose a password are left untouched.
        """
        stmt = (
            update(ClientCredential)
            .where(
                ClientCredential.client_code == client_code,
                ClientCredential.password_state != PasswordState.USER_SET.value,
            )
            .values(
                password_hash=password_hash,
                password_state=PasswordState.DEFAULT_ASSIGNED.value,
            )
            .execution_options(synchronize_session=False)
        )
        with _store_errors("assign_default_password"):
            result = await self.db.execute(stmt)
            await self.db.flush()
            return result.rowcount

    # --- Onboarding administration ---

    async def list_onboarding_candidates(self) -> list[ClientCredential]:
        """Every account with a usable email address."""
        with _store_errors("list_onboarding_candidates"):
            result = await self.db.execute(
                self._select().where(
                    ClientCredential.email.is_not(None),
                    ClientCredential.email != "",
                )
            )
            return list(result.scalars().all())

    async def count_missing_email(self) -> int:
        with _store_errors("count_missing_email"):
            result = await self.db.execute(
                select(func.count(ClientCredential.id)).where(
                    or_(ClientCredential.email.is_(None), ClientCredential.email == "")
                )
            )
            return result.scalar() or 0

    async def mark_campaign_sent(self, client_codes: Sequence[str]) -> int:
        """Advance stored status to email_sent for accounts still awaiting setup."""
        if not client_codes:
            return 0
        stmt = (
            update(ClientCredential)
            .where(
                ClientCredential.client_code.in_(list(client_codes)),
                ClientCredential.password_state != PasswordState.USER_SET.value,
            )
            .values(onboarding_status=OnboardingStatus.EMAIL_SENT.value)
            .execution_options(synchronize_session=False)
        )
        with _store_errors("mark_campaign_sent"):
            result = await self.db.execute(stmt)
            await self.db.flush()
            return result.rowcount

    # --- Forgot-password tokens ---

    async def create_reset_token(self, email: str, token_hash: str, expires_at: datetime) -> None:
        """Record a reset token, retiring any outstanding ones for the email."""
        with _store_errors("create_reset_token"):
            await self.db.execute(
                update(PasswordResetToken)
                .where(PasswordResetToken.email == email, PasswordResetToken.used.is_(False))
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            self.db.add(
                PasswordResetToken(email=email, token_hash=token_hash, expires_at=expires_at)
            )
            await self.db.commit()

    async def get_reset_token(self, token_hash: str) -> PasswordResetToken | None:
        with _store_errors("get_reset_token"):
            result = await self.db.execute(
                select(PasswordResetToken)
                .where(PasswordResetToken.token_hash == token_hash)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def consume_reset_token(self, email: str, password_hash: str, now: datetime) -> int:
        """Store the new password and retire every reset token for the email."""
        with _store_errors("consume_reset_token"):
            result = await self.db.execute(
                update(ClientCredential)
                .where(ClientCredential.email == email)
                .values(
                    password_hash=password_hash,
                    password_state=PasswordState.USER_SET.value,
                    password_set_at=now,
                    onboarding_status=OnboardingStatus.COMPLETED.value,
                    password_setup_token=None,
                    password_setup_expires=None,
                    login_attempts=0,
                    locked_until=None,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                update(PasswordResetToken)
                .where(PasswordResetToken.email == email)
                .values(used=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.flush()
            return result.rowcount
