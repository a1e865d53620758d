"""Account lockout guard.

Decides from the stored attempt counter and lock timestamp whether a
password check may run at all, and records its result. Counters are shared
by every account of an email, matching how passwords are shared.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from portal.core.config import Settings, settings
from portal.core.timeutils import ensure_utc, minutes_until, utc_now
from portal.models import ClientCredential
from portal.services.credential_store import CredentialStore
from portal.services.errors import LockedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockoutPolicy:
    """Consecutive failures allowed and how long the resulting lock lasts."""

    threshold: int
    lock_duration: timedelta

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "LockoutPolicy":
        return cls(
            threshold=config.lockout_threshold,
            lock_duration=timedelta(minutes=config.lockout_minutes),
        )


@dataclass(frozen=True)
class LockoutOutcome:
    """Result of a lockout check or of recording an attempt."""

    allowed: bool
    attempts: int
    locked_until: datetime | None = None
    remaining_minutes: int | None = None

    def raise_if_locked(self) -> None:
        if not self.allowed:
            raise LockedError(self.remaining_minutes or 0, self.locked_until)


def evaluate_lock(attempts: int, locked_until: datetime | None, now: datetime) -> LockoutOutcome:
    """Pre-comparison gate: a lock in the future rejects without side effects."""
    locked_until = ensure_utc(locked_until)
    if locked_until is not None and locked_until > now:
        return LockoutOutcome(
            allowed=False,
            attempts=attempts,
            locked_until=locked_until,
            remaining_minutes=minutes_until(locked_until, now),
        )
    return LockoutOutcome(allowed=True, attempts=attempts)


class LockoutGuard:
    """Gate password comparisons on lockout state and persist their outcome."""

    def __init__(
        self,
        store: CredentialStore,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy or LockoutPolicy.from_settings()
        self.clock = clock

    def check(self, credential: ClientCredential) -> LockoutOutcome:
        """Whether a password comparison may run for this credential now."""
        return evaluate_lock(credential.login_attempts, credential.locked_until, self.clock())

    async def check_and_record_attempt(
        self, credential: ClientCredential, succeeded: bool
    ) -> LockoutOutcome:
        """Record the result of a password comparison.

        An active lock short-circuits: nothing is written and the remaining
        lock time is reported. A success clears the counters; a failure
        increments them and may start a lock.
        """
        outcome = self.check(credential)
        if not outcome.allowed:
            return outcome

        email = credential.email
        if email is None:
            # Accounts without an email cannot log in, so there is nothing to count
            return outcome

        if succeeded:
            if credential.login_attempts or credential.locked_until is not None:
                await self.store.reset_login_attempts(email)
            return LockoutOutcome(allowed=True, attempts=0)

        now = self.clock()
        state = await self.store.record_failed_attempt(
            email,
            threshold=self.policy.threshold,
            lock_until=now + self.policy.lock_duration,
        )
        locked_until = ensure_utc(state.locked_until)
        if locked_until is not None and locked_until > now:
            logger.warning(
                "Account locked after %d failed attempts until %s",
                state.login_attempts,
                locked_until.isoformat(),
                extra={
                    "event": "account_locked",
                    "client_code": credential.client_code,
                    "attempts": state.login_attempts,
                },
            )
            return LockoutOutcome(
                allowed=False,
                attempts=state.login_attempts,
                locked_until=locked_until,
                remaining_minutes=minutes_until(locked_until, now),
            )
        return LockoutOutcome(allowed=True, attempts=state.login_attempts)
