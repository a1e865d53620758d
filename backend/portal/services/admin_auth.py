"""Administrator accounts: first-run setup and password authentication."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.timeutils import utc_now
from portal.models.admin_user import AdminUser
from portal.services.admin_session import AdminIdentity
from portal.services.errors import AuthError
from portal.services.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class InvalidCredentialsError(AuthError):
    """Invalid username or password."""

    pass


class UserInactiveError(AuthError):
    """User account is deactivated."""

    pass


class AdminExistsError(AuthError):
    """An administrator has already been created."""

    pass


def identity_for(user: AdminUser) -> AdminIdentity:
    return AdminIdentity(
        user_id=str(user.id),
        username=user.username,
        display_name=user.display_name,
    )


class AdminAuthService:
    """Service for admin authentication operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def admin_exists(self) -> bool:
        """Check if any admin user exists."""
        result = await self.session.execute(select(func.count(AdminUser.id)))
        count = result.scalar()
        return (count or 0) > 0

    async def get_user_by_username(self, username: str) -> AdminUser | None:
        result = await self.session.execute(select(AdminUser).where(AdminUser.username == username))
        return result.scalar_one_or_none()

    async def create_admin_user(
        self, username: str, password: str, display_name: str | None = None
    ) -> AdminUser:
        """Create the first admin user."""
        if await self.admin_exists():
            raise AdminExistsError("Admin user already exists")

        user = AdminUser(
            username=username,
            display_name=display_name,
            password_hash=hash_password(password),
        )
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)

        logger.info(f"Created admin user: {username}")
        return user

    async def authenticate(self, username: str, password: str) -> AdminUser:
        """Authenticate an admin and return the user object.

        Raises InvalidCredentialsError for both "user not found" and
        "wrong password" to prevent user enumeration.
        """
        user = await self.get_user_by_username(username)

        if user is None:
            verify_password(password, None)
            raise InvalidCredentialsError("Invalid username or password")

        if not user.is_active:
            raise UserInactiveError("User account is deactivated")

        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Invalid username or password")

        user.last_login_at = utc_now()
        await self.session.commit()

        return user
