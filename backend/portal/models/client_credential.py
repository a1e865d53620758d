"""Client credential model - one row per managed client account."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from portal.models.base import BaseModel


class PasswordState(enum.StrEnum):
    """Who chose the stored password, if anyone."""

    UNSET = "unset"
    DEFAULT_ASSIGNED = "default_assigned"
    USER_SET = "user_set"


class OnboardingStatus(enum.StrEnum):
    PENDING = "pending"
    EMAIL_SENT = "email_sent"
    COMPLETED = "completed"


class ClientCredential(BaseModel):
    """Login and onboarding state for a client account.

    Several accounts may share one email; a login by that email acts on
    behalf of all of them, and password/lockout writes apply to the whole
    group. The setup slot (password_setup_token/expires) holds either a
    link token or an OTP code and is overwritten on re-issue. An expired
    value is left in place and ignored by readers.
    """

    __tablename__ = "clients"

    client_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    client_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)

    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password_state: Mapped[str] = mapped_column(
        String(32), default=PasswordState.UNSET.value, nullable=False
    )
    password_set_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Lockout
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Single-use setup secret (link token or OTP)
    password_setup_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    password_setup_expires: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    onboarding_status: Mapped[str | None] = mapped_column(
        String(32), default=OnboardingStatus.PENDING.value, nullable=True
    )
    first_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def has_user_password(self) -> bool:
        return self.password_state == PasswordState.USER_SET

    def __repr__(self) -> str:
        return f"<ClientCredential {self.client_code}>"
