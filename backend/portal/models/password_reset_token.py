"""Forgot-password reset tokens."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from portal.models.base import BaseModel


class PasswordResetToken(BaseModel):
    """A reset link issued to an email address.

    Only the SHA-256 digest of the raw token is stored. Issuing a new token
    marks every outstanding token for the same email as used.
    """

    __tablename__ = "password_reset_tokens"

    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
