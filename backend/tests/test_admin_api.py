"""Tests for the admin onboarding API and the admin route gate."""

from datetime import UTC, datetime, timedelta

import pytest

from portal.core.timeutils import utc_now
from portal.models import OnboardingStatus, PasswordState
from portal.services.admin_session import SESSION_COOKIE
from portal.services.client_session import AUTH_COOKIE
from tests.conftest import DEFAULT_PASSWORD


class TestGate:
    @pytest.mark.asyncio
    async def test_api_without_cookie_redirects_to_login(self, async_client):
        response = await async_client.get("/api/admin/onboarding-status")
        assert response.status_code == 307
        assert (
            response.headers["location"]
            == "/admin/login?redirect=%2Fapi%2Fadmin%2Fonboarding-status"
        )

    @pytest.mark.asyncio
    async def test_admin_page_without_cookie_redirects(self, async_client):
        response = await async_client.get("/admin/clients")
        assert response.status_code == 307
        assert response.headers["location"].startswith("/admin/login?redirect=")

    @pytest.mark.asyncio
    async def test_unknown_session_is_unauthorized(self, async_client):
        async_client.cookies.set(SESSION_COOKIE, "forged-session-id")
        response = await async_client.get("/api/admin/onboarding-status")
        assert response.status_code == 401
        assert "set-cookie" in response.headers

    @pytest.mark.asyncio
    async def test_public_endpoints_are_not_gated(self, async_client):
        response = await async_client.get("/api/auth/admin/status")
        assert response.status_code == 200


class TestOnboardingListing:
    @pytest.mark.asyncio
    async def test_order_and_derived_status(self, admin_client, client_factory):
        now = utc_now()
        await client_factory("OLD", created_at=now - timedelta(days=3))
        await client_factory("NEW", created_at=now - timedelta(days=1))
        await client_factory(
            "SENT",
            password_setup_token="tok",
            password_setup_expires=now + timedelta(hours=5),
            onboarding_status=OnboardingStatus.EMAIL_SENT.value,
            created_at=now,
        )
        await client_factory(
            "STALE",
            password_setup_token="tok2",
            password_setup_expires=now - timedelta(hours=1),
            onboarding_status=OnboardingStatus.EMAIL_SENT.value,
            created_at=now - timedelta(days=2),
        )
        await client_factory(
            "DONE",
            password_state=PasswordState.USER_SET.value,
            onboarding_status=OnboardingStatus.COMPLETED.value,
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        await client_factory("NOMAIL", email=None)

        response = await admin_client.get("/api/admin/onboarding-status")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 5
        rows = [(c["client_code"], c["status"]) for c in data["clients"]]
        assert rows == [
            ("NEW", "pending"),
            ("STALE", "pending"),
            ("OLD", "pending"),
            ("SENT", "email_sent"),
            ("DONE", "completed"),
        ]
        stale = next(c for c in data["clients"] if c["client_code"] == "STALE")
        assert stale["stored_status"] == "email_sent"

    @pytest.mark.asyncio
    async def test_stats(self, admin_client, client_factory):
        await client_factory("A100")
        await client_factory(
            "B200",
            password_setup_token="tok",
            password_setup_expires=utc_now() + timedelta(hours=1),
        )
        await client_factory(
            "C300",
            password_state=PasswordState.USER_SET.value,
            onboarding_status=OnboardingStatus.COMPLETED.value,
        )
        await client_factory("D400", email=None)

        response = await admin_client.get("/api/admin/onboarding-stats")

        assert response.status_code == 200
        data = response.json()
        assert data["total_with_email"] == 3
        assert data["ready_for_campaign"] == 1
        assert data["email_sent"] == 1
        assert data["completed"] == 1
        assert data["missing_email"] == 1
        assert [c["client_code"] for c in data["ready_clients"]] == ["A100"]

    @pytest.mark.asyncio
    async def test_campaign_sent(self, admin_client, client_factory, reload_client):
        await client_factory("A100")
        await client_factory("B200", password_state=PasswordState.USER_SET.value)

        response = await admin_client.post(
            "/api/admin/onboarding/campaign-sent", json={"client_codes": ["A100", "B200"]}
        )

        assert response.status_code == 200
        assert response.json()["updated"] == 1
        assert (await reload_client("A100")).onboarding_status == OnboardingStatus.EMAIL_SENT


class TestSetupLink:
    @pytest.mark.asyncio
    async def test_sends_link(self, admin_client, client_factory, email_outbox):
        await client_factory("A100", email="a@example.com", client_name="Jane")

        response = await admin_client.post("/api/admin/setup-link", json={"client_code": "A100"})

        assert response.status_code == 200
        assert response.json()["email"] == "a@example.com"
        assert email_outbox.setup_emails[0]["to"] == "a@example.com"
        assert email_outbox.setup_emails[0]["name"] == "Jane"
        assert "/auth/setup-password?code=A100&token=" in email_outbox.setup_emails[0]["link"]

    @pytest.mark.asyncio
    async def test_link_returned_when_delivery_fails(
        self, admin_client, client_factory, email_outbox
    ):
        await client_factory("A100", email="a@example.com")
        email_outbox.deliver = False

        response = await admin_client.post("/api/admin/setup-link", json={"client_code": "A100"})

        assert response.status_code == 200
        data = response.json()
        assert data["email_sent"] is False
        assert data["setup_link"] == email_outbox.setup_emails[0]["link"]

    @pytest.mark.asyncio
    async def test_reissue_invalidates_previous_link(
        self, admin_client, client_factory, email_outbox
    ):
        await client_factory("A100")
        await admin_client.post("/api/admin/setup-link", json={"client_code": "A100"})
        await admin_client.post("/api/admin/setup-link", json={"client_code": "A100"})
        first, second = (e["link"].split("token=")[1] for e in email_outbox.setup_emails)

        response = await admin_client.get(
            "/api/auth/validate-setup-token", params={"code": "A100", "token": first}
        )
        assert response.status_code == 400
        response = await admin_client.get(
            "/api/auth/validate-setup-token", params={"code": "A100", "token": second}
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_client(self, admin_client):
        response = await admin_client.post("/api/admin/setup-link", json={"client_code": "Z999"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_client_without_email(self, admin_client, client_factory):
        await client_factory("A100", email=None)
        response = await admin_client.post("/api/admin/setup-link", json={"client_code": "A100"})
        assert response.status_code == 400


class TestDefaultPassword:
    @pytest.mark.asyncio
    async def test_provisioned_client_can_sign_in_with_default(
        self, admin_client, client_factory, reload_client
    ):
        await client_factory("A100", email="a@example.com", password=None)
        assert (await reload_client("A100")).password_state == PasswordState.UNSET

        response = await admin_client.post(
            "/api/admin/default-password", json={"client_code": "A100"}
        )

        assert response.status_code == 200
        assert response.json() == {"client_code": "A100", "password_state": "default_assigned"}
        assert (await reload_client("A100")).password_state == PasswordState.DEFAULT_ASSIGNED

        response = await admin_client.post(
            "/api/auth/login", json={"email": "a@example.com", "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 200
        assert response.json()["requires_setup"] is True

    @pytest.mark.asyncio
    async def test_chosen_password_is_not_overwritten(
        self, admin_client, client_factory, reload_client
    ):
        await client_factory("A100", password_state=PasswordState.USER_SET.value)
        before = (await reload_client("A100")).password_hash

        response = await admin_client.post(
            "/api/admin/default-password", json={"client_code": "A100"}
        )

        assert response.status_code == 409
        credential = await reload_client("A100")
        assert credential.password_state == PasswordState.USER_SET
        assert credential.password_hash == before

    @pytest.mark.asyncio
    async def test_unknown_client(self, admin_client):
        response = await admin_client.post(
            "/api/admin/default-password", json={"client_code": "Z999"}
        )
        assert response.status_code == 404


class TestImpersonate:
    @pytest.mark.asyncio
    async def test_opens_client_session_for_the_email_group(self, admin_client, client_factory):
        await client_factory("A100", email="family@example.com")
        await client_factory("B200", email="family@example.com")

        response = await admin_client.post("/api/admin/impersonate", json={"client_code": "B200"})

        assert response.status_code == 200
        assert response.json() == {"client_code": "B200", "accounts": 2}
        assert admin_client.cookies.get(AUTH_COOKIE) == "1"

        response = await admin_client.get("/api/auth/client-data")
        assert [a["client_code"] for a in response.json()["accounts"]] == ["A100", "B200"]

    @pytest.mark.asyncio
    async def test_unknown_client(self, admin_client):
        response = await admin_client.post("/api/admin/impersonate", json={"client_code": "Z999"})
        assert response.status_code == 404
