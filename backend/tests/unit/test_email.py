"""Tests for the transactional email service."""

from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from portal.core.config import settings
from portal.services.email import RESEND_API_URL, EmailService


def _service(api_key: str | None = "re_test_key") -> EmailService:
    return EmailService(settings.model_copy(update={"resend_api_key": api_key}))


def _mock_client(post: AsyncMock) -> MagicMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.post = post
    return mock_client


class TestLinks:
    def test_setup_link_carries_code_and_token(self):
        link = _service().setup_link("C0001", "abc123")
        assert link == f"{settings.public_app_url}/auth/setup-password?code=C0001&token=abc123"

    def test_setup_link_encodes_query_values(self):
        link = _service().setup_link("A&B 1", "tok=en")
        assert parse_qs(urlparse(link).query) == {"code": ["A&B 1"], "token": ["tok=en"]}

    def test_reset_link(self):
        assert _service().reset_link("xyz").endswith("/auth/reset-password?token=xyz")


class TestSend:
    @pytest.mark.asyncio
    async def test_without_api_key_only_logs(self):
        with patch("httpx.AsyncClient") as mock_client_cls:
            sent = await _service(api_key=None).send_setup_email(
                "investor@example.com", "Jane", "http://x/link"
            )
        assert sent is False
        mock_client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_posts_to_resend(self):
        post = AsyncMock(return_value=MagicMock(status_code=200))
        with patch("httpx.AsyncClient", return_value=_mock_client(post)):
            sent = await _service().send_setup_otp_email("investor@example.com", "Jane", "123456")

        assert sent is True
        url = post.call_args.args[0]
        body = post.call_args.kwargs["json"]
        headers = post.call_args.kwargs["headers"]
        assert url == RESEND_API_URL
        assert body["to"] == ["investor@example.com"]
        assert "123456" in body["html"]
        assert headers["Authorization"] == "Bearer re_test_key"

    @pytest.mark.asyncio
    async def test_names_are_escaped(self):
        post = AsyncMock(return_value=MagicMock(status_code=200))
        with patch("httpx.AsyncClient", return_value=_mock_client(post)):
            await _service().send_setup_email("a@example.com", "<b>Jane</b>", "http://x/link")

        assert "&lt;b&gt;Jane&lt;/b&gt;" in post.call_args.kwargs["json"]["html"]

    @pytest.mark.asyncio
    async def test_provider_error_is_reported_not_raised(self):
        post = AsyncMock(return_value=MagicMock(status_code=422))
        with patch("httpx.AsyncClient", return_value=_mock_client(post)):
            sent = await _service().send_password_reset_email("a@example.com", "http://x/r")
        assert sent is False

    @pytest.mark.asyncio
    async def test_network_failure_does_not_raise(self):
        post = AsyncMock(side_effect=httpx.ConnectError("Network error"))
        with patch("httpx.AsyncClient", return_value=_mock_client(post)):
            sent = await _service().send_setup_email("a@example.com", None, "http://x/link")
        assert sent is False
