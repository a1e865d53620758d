"""Onboarding status derivation and the administrative listing order."""

from collections.abc import Iterable
from datetime import UTC, datetime

from portal.core.timeutils import ensure_utc
from portal.models import ClientCredential, OnboardingStatus
from portal.services.setup_token import active_secret

# Display order administrators rely on; anything else sorts after these
STATUS_ORDER = {
    OnboardingStatus.PENDING.value: 1,
    OnboardingStatus.EMAIL_SENT.value: 2,
    OnboardingStatus.COMPLETED.value: 3,
}
UNKNOWN_STATUS_RANK = 4


def derive_status(credential: ClientCredential, now: datetime) -> OnboardingStatus:
    """Onboarding stage computed from password and setup-secret fields."""
    if (
        credential.has_user_password
        and credential.onboarding_status == OnboardingStatus.COMPLETED
    ):
        return OnboardingStatus.COMPLETED
    if not credential.has_user_password and active_secret(credential, now) is not None:
        return OnboardingStatus.EMAIL_SENT
    return OnboardingStatus.PENDING


def status_rank(status: str | None) -> int:
    return STATUS_ORDER.get(status or "", UNKNOWN_STATUS_RANK)


def sort_for_listing(
    rows: Iterable[tuple[ClientCredential, str]],
) -> list[tuple[ClientCredential, str]]:
    """Order (credential, status) pairs by status rank, newest first within a rank."""
    # Two stable passes: newest first, then by rank
    by_created = sorted(
        rows,
        key=lambda row: ensure_utc(row[0].created_at) or datetime.min.replace(tzinfo=UTC),
        reverse=True,
    )
    return sorted(by_created, key=lambda row: status_rank(row[1]))


def build_listing(
    credentials: Iterable[ClientCredential], now: datetime
) -> list[tuple[ClientCredential, str]]:
    """Credentials paired with their derived status, in listing order."""
    return sort_for_listing(
        (credential, derive_status(credential, now).value) for credential in credentials
    )
