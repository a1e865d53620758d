"""Tests for admin authentication endpoints."""

from urllib.parse import parse_qs, urlparse

import pytest

from portal.api.admin_auth import safe_redirect
from portal.services.admin_session import SESSION_COOKIE


async def _login(client, username, password, redirect=None):
    body = {"username": username, "password": password}
    if redirect is not None:
        body["redirect"] = redirect
    return await client.post("/api/auth/admin/login", json=body)


class TestSetup:
    @pytest.mark.asyncio
    async def test_status_before_and_after_setup(self, async_client):
        response = await async_client.get("/api/auth/admin/status")
        assert response.status_code == 200
        assert response.json()["setup_required"] is True

        response = await async_client.post(
            "/api/auth/admin/setup",
            json={"username": "firstadmin", "password": "a-long-password-1"},
        )
        assert response.status_code == 201
        assert response.json()["username"] == "firstadmin"

        response = await async_client.get("/api/auth/admin/status")
        assert response.json()["setup_required"] is False

    @pytest.mark.asyncio
    async def test_second_setup_conflicts(self, async_client, admin_user):
        response = await async_client.post(
            "/api/auth/admin/setup",
            json={"username": "another", "password": "a-long-password-1"},
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_short_password_rejected(self, async_client):
        response = await async_client.post(
            "/api/auth/admin/setup", json={"username": "firstadmin", "password": "short"}
        )
        assert response.status_code == 422


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_returns_ticket_without_cookie(self, async_client, admin_user):
        from tests.conftest import TEST_ADMIN_PASSWORD, TEST_ADMIN_USERNAME

        response = await _login(
            async_client, TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD, redirect="/admin/clients"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["ticket"]
        assert data["expires_in"] == 60
        url = urlparse(data["complete_url"])
        assert url.path == "/admin/auth-complete"
        assert parse_qs(url.query) == {"token": [data["ticket"]], "redirect": ["/admin/clients"]}
        assert SESSION_COOKIE not in async_client.cookies

    @pytest.mark.asyncio
    async def test_offsite_redirect_is_replaced(self, async_client, admin_user):
        from tests.conftest import TEST_ADMIN_PASSWORD, TEST_ADMIN_USERNAME

        response = await _login(
            async_client, TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD, redirect="//evil.example.com"
        )
        query = parse_qs(urlparse(response.json()["complete_url"]).query)
        assert query["redirect"] == ["/admin"]

    @pytest.mark.asyncio
    async def test_wrong_password(self, async_client, admin_user):
        from tests.conftest import TEST_ADMIN_USERNAME

        response = await _login(async_client, TEST_ADMIN_USERNAME, "wrong-password")
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid username or password"

    @pytest.mark.asyncio
    async def test_unknown_user(self, async_client, admin_user):
        response = await _login(async_client, "nobody", "whatever")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_inactive_user(self, async_client, admin_user, db_session):
        from tests.conftest import TEST_ADMIN_PASSWORD, TEST_ADMIN_USERNAME

        admin_user.is_active = False
        await db_session.commit()

        response = await _login(async_client, TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD)
        assert response.status_code == 401
        assert response.json()["detail"] == "User account is deactivated"

    @pytest.mark.asyncio
    async def test_failed_logins_are_rate_limited(self, async_client, admin_user):
        from tests.conftest import TEST_ADMIN_PASSWORD, TEST_ADMIN_USERNAME

        for _ in range(5):
            response = await _login(async_client, TEST_ADMIN_USERNAME, "wrong-password")
            assert response.status_code == 401

        response = await _login(async_client, TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD)
        assert response.status_code == 429


class TestComplete:
    @pytest.mark.asyncio
    async def test_ticket_becomes_session(self, admin_client):
        response = await admin_client.get("/api/auth/admin/session")
        assert response.status_code == 200
        data = response.json()
        assert data["authenticated"] is True
        assert data["username"] == "testadmin"
        assert data["display_name"] == "Test Admin"
        assert 0 < data["expires_in"] <= 24 * 3600

    @pytest.mark.asyncio
    async def test_invalid_ticket(self, async_client):
        response = await async_client.post(
            "/api/auth/admin/complete", json={"token": "not-a-ticket"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired login ticket"
        assert SESSION_COOKIE not in async_client.cookies

    @pytest.mark.asyncio
    async def test_ticket_cannot_be_replayed(self, async_client, admin_user):
        from tests.conftest import TEST_ADMIN_PASSWORD, TEST_ADMIN_USERNAME

        response = await _login(async_client, TEST_ADMIN_USERNAME, TEST_ADMIN_PASSWORD)
        ticket = response.json()["ticket"]

        response = await async_client.post("/api/auth/admin/complete", json={"token": ticket})
        assert response.status_code == 200
        async_client.cookies.clear()

        response = await async_client.post("/api/auth/admin/complete", json={"token": ticket})
        assert response.status_code == 401
        assert SESSION_COOKIE not in async_client.cookies


class TestSession:
    @pytest.mark.asyncio
    async def test_no_session(self, async_client):
        response = await async_client.get("/api/auth/admin/session")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_session_clears_cookie(self, async_client):
        async_client.cookies.set(SESSION_COOKIE, "unknown-session-id")
        response = await async_client.get("/api/auth/admin/session")
        assert response.status_code == 401
        assert f'{SESSION_COOKIE}=""' in response.headers["set-cookie"]

    @pytest.mark.asyncio
    async def test_logout_revokes(self, admin_client):
        session_id = admin_client.cookies.get(SESSION_COOKIE)

        response = await admin_client.post("/api/auth/admin/logout")
        assert response.status_code == 200

        admin_client.cookies.set(SESSION_COOKIE, session_id)
        response = await admin_client.get("/api/auth/admin/session")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_twice_is_harmless(self, async_client):
        assert (await async_client.post("/api/auth/admin/logout")).status_code == 200
        assert (await async_client.post("/api/auth/admin/logout")).status_code == 200


class TestSafeRedirect:
    @pytest.mark.parametrize(
        "target,expected",
        [
            ("/admin/clients", "/admin/clients"),
            (None, "/admin"),
            ("", "/admin"),
            ("https://evil.example.com", "/admin"),
            ("//evil.example.com", "/admin"),
            ("/\\evil.example.com", "/admin"),
        ],
    )
    def test_targets(self, target, expected):
        assert safe_redirect(target) == expected
