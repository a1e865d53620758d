"""Pytest configuration and fixtures for backend tests.

Database handling:
- TEST_DATABASE_URL (e.g. a PostgreSQL asyncpg URL) is used when set
- Otherwise every test gets its own SQLite file through aiosqlite
"""

import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'portal_app.db')}",
)
os.environ["SESSION_SECRET_KEY"] = "test-session-secret-key-0123456789abcdef"
os.environ["PORTAL_ENVIRONMENT"] = "test"
os.environ.pop("RESEND_API_KEY", None)

# Test credentials
TEST_ADMIN_USERNAME = "testadmin"
TEST_ADMIN_PASSWORD = "testpassword123"
DEFAULT_PASSWORD = "Welcome@123"
STRONG_PASSWORD = "Str0ng!Passw0rd"

_AUTO_EMAIL = object()


def pytest_collection_modifyitems(config, items):
    """Mark tests under unit/ as unit tests and everything else as integration."""
    for item in items:
        if "/unit/" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)


# --- Process-wide state resets ---


def _reset_auth_state():
    """Reset in-memory auth state kept at module level.

    The admin session store and the login and OTP throttles live in process
    memory; without clearing them sessions and failed attempts leak between
    tests.
    """
    import portal.services.admin_session as admin_session_module
    from portal.api.admin_auth import _login_attempts
    from portal.api.client_auth import _otp_attempts

    admin_session_module._store = None
    _login_attempts.clear()
    _otp_attempts.clear()


@pytest.fixture(autouse=True)
def reset_auth_state():
    _reset_auth_state()
    yield
    _reset_auth_state()


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a database engine with all tables for one test."""
    from portal.models.base import BaseModel

    url = os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = create_async_engine(url, poolclass=NullPool, echo=False)

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# --- Email ---


class RecordingEmailService:
    """Email service double that keeps every message instead of sending it."""

    def __init__(self):
        from portal.services.email import EmailService

        self._links = EmailService()
        self.setup_emails: list[dict[str, str | None]] = []
        self.otp_emails: list[dict[str, str | None]] = []
        self.reset_emails: list[dict[str, str]] = []
        self.deliver = True

    def setup_link(self, client_code: str, token: str) -> str:
        return self._links.setup_link(client_code, token)

    def reset_link(self, token: str) -> str:
        return self._links.reset_link(token)

    async def send_setup_email(self, to, client_name, setup_link) -> bool:
        self.setup_emails.append({"to": to, "name": client_name, "link": setup_link})
        return self.deliver

    async def send_setup_otp_email(self, to, client_name, otp) -> bool:
        self.otp_emails.append({"to": to, "name": client_name, "otp": otp})
        return self.deliver

    async def send_password_reset_email(self, to, reset_link) -> bool:
        self.reset_emails.append({"to": to, "link": reset_link})
        return self.deliver


@pytest.fixture
def email_outbox() -> RecordingEmailService:
    return RecordingEmailService()


# --- HTTP client ---


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession, email_outbox: RecordingEmailService
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database and email overrides."""
    from portal.api.deps import get_email_service
    from portal.core.database import get_db
    from portal.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: email_outbox

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()


# --- Test Factories ---


@pytest.fixture
def client_factory(db_session):
    """Factory for creating ClientCredential rows."""
    from portal.models import ClientCredential, OnboardingStatus, PasswordState
    from portal.services.passwords import hash_password

    counter = {"n": 0}

    async def _create_client(
        client_code: str | None = None,
        email: str | None | object = _AUTO_EMAIL,
        password: str | None = DEFAULT_PASSWORD,
        password_state: str | None = None,
        onboarding_status: str | None = OnboardingStatus.PENDING.value,
        created_at: datetime | None = None,
        **kwargs,
    ) -> ClientCredential:
        counter["n"] += 1
        code = client_code or f"C{counter['n']:04d}"
        if email is _AUTO_EMAIL:
            email = f"{code.lower()}@example.com"
        if password_state is None:
            password_state = (
                PasswordState.DEFAULT_ASSIGNED.value if password else PasswordState.UNSET.value
            )
        credential = ClientCredential(
            client_id=kwargs.pop("client_id", f"id-{code}"),
            client_code=code,
            client_name=kwargs.pop("client_name", f"Client {code}"),
            email=email,
            password_hash=hash_password(password) if password else None,
            password_state=password_state,
            onboarding_status=onboarding_status,
            **kwargs,
        )
        if created_at is not None:
            credential.created_at = created_at
        db_session.add(credential)
        await db_session.commit()
        return credential

    return _create_client


@pytest.fixture
def reload_client(db_session):
    """Re-read a client row, bypassing values cached in the session."""
    from portal.services.credential_store import CredentialStore

    async def _reload(client_code: str):
        return await CredentialStore(db_session).get_by_client_code(client_code)

    return _reload


@pytest_asyncio.fixture
async def admin_user(db_session):
    """Create the admin user."""
    from portal.services.admin_auth import AdminAuthService

    return await AdminAuthService(db_session).create_admin_user(
        TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD, display_name="Test Admin"
    )


@pytest_asyncio.fixture
async def admin_client(async_client: AsyncClient, admin_user) -> AsyncClient:
    """The async client holding a committed admin session cookie."""
    response = await async_client.post(
        "/api/auth/admin/login",
        json={"username": TEST_ADMIN_USERNAME, "password": TEST_ADMIN_PASSWORD},
    )
    assert response.status_code == 200
    response = await async_client.post(
        "/api/auth/admin/complete", json={"token": response.json()["ticket"]}
    )
    assert response.status_code == 200
    assert async_client.cookies.get("admin-session")
    return async_client
