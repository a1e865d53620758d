"""Password hashing and password policy."""

import re

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

MIN_PASSWORD_LENGTH = 8
_SPECIAL_CHARS = re.compile(r"[!@#$%^&*(),.?\":{}|<>]")

# Hash used to equalise timing when an identity has no password at all
_DUMMY_HASH = ph.hash("dummy-password-for-timing")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    """Verify a password against its hash using constant-time comparison.

    A missing or unparseable hash never verifies, but still costs one
    hash computation so callers cannot tell the cases apart by timing.
    """
    if not password_hash:
        _burn_hash(password)
        return False
    try:
        ph.verify(password_hash, password)
        return True
    except VerifyMismatchError:
        return False
    except (InvalidHashError, VerificationError):
        return False


def _burn_hash(password: str) -> None:
    try:
        ph.verify(_DUMMY_HASH, password)
    except VerifyMismatchError:
        pass


def password_policy_errors(password: str, default_password: str | None = None) -> list[str]:
    """Return the policy rules the password violates (empty when acceptable)."""
    errors: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not (
        re.search(r"[A-Z]", password)
        and re.search(r"[a-z]", password)
        and re.search(r"\d", password)
        and _SPECIAL_CHARS.search(password)
    ):
        errors.append(
            "Password must contain uppercase, lowercase, numbers, and special characters"
        )
    if default_password is not None and password == default_password:
        errors.append("Please choose a different password than the default one")
    return errors
