"""Transactional email delivery via the Resend HTTP API.

Sending is best-effort: a failed delivery is logged and reported through
the return value, never raised, so an outage of the mail provider cannot
break the flow that triggered the message. Without RESEND_API_KEY messages
are only logged, which is what local development and tests rely on.
"""

import logging
from dataclasses import dataclass
from html import escape
from urllib.parse import urlencode

import httpx

from portal.core.config import Settings, settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str


class EmailService:
    """Builds and delivers the portal's account emails."""

    def __init__(self, config: Settings = settings):
        self.config = config

    # --- Links ---

    def setup_link(self, client_code: str, token: str) -> str:
        query = urlencode({"code": client_code, "token": token})
        return f"{self.config.public_app_url}/auth/setup-password?{query}"

    def reset_link(self, token: str) -> str:
        query = urlencode({"token": token})
        return f"{self.config.public_app_url}/auth/reset-password?{query}"

    # --- Messages ---

    async def send_setup_email(self, to: str, client_name: str | None, setup_link: str) -> bool:
        """Invite a client to choose their password."""
        name = escape(client_name or "Investor")
        html = (
            f"<p>Dear {name},</p>"
            "<p>Your investor portal account is ready. Please set up your password "
            "using the link below. The link is valid for "
            f"{self.config.setup_token_ttl_hours} hours.</p>"
            f'<p><a href="{escape(setup_link)}">Set up your password</a></p>'
            "<p>If you did not expect this email, you can ignore it.</p>"
        )
        return await self.send(EmailMessage(to=to, subject="Set up your portal password", html=html))

    async def send_setup_otp_email(self, to: str, client_name: str | None, otp: str) -> bool:
        """Deliver a one-time code for password setup."""
        name = escape(client_name or "Investor")
        html = (
            f"<p>Dear {name},</p>"
            f"<p>Your verification code is <strong>{escape(otp)}</strong>.</p>"
            f"<p>It expires in {self.config.setup_otp_ttl_minutes} minutes.</p>"
        )
        return await self.send(EmailMessage(to=to, subject="Your verification code", html=html))

    async def send_password_reset_email(self, to: str, reset_link: str) -> bool:
        """Deliver a forgot-password link."""
        html = (
            "<p>We received a request to reset your portal password.</p>"
            f'<p><a href="{escape(reset_link)}">Reset your password</a></p>'
            f"<p>The link expires in {self.config.reset_token_ttl_minutes} minutes. "
            "If you did not request a reset, no action is needed.</p>"
        )
        return await self.send(EmailMessage(to=to, subject="Reset your portal password", html=html))

    # --- Transport ---

    async def send(self, message: EmailMessage) -> bool:
        """Deliver a message. Returns True when the provider accepted it."""
        if not self.config.resend_api_key:
            logger.info(f"Email delivery disabled; would send '{message.subject}' to {message.to}")
            return False

        payload = {
            "from": self.config.email_from,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        headers = {"Authorization": f"Bearer {self.config.resend_api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
                response = await client.post(RESEND_API_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Email delivery failed: {e}")
            return False

        if response.status_code >= 400:
            logger.warning(f"Email delivery failed: HTTP {response.status_code}")
            return False
        return True
