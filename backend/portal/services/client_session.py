"""Client flag sessions.

A client session has no server-side record: the ``client-auth`` cookie
carries the "1" flag and ``client-accounts`` carries the accounts the login
may act for, signed as an HS256 JWT so it cannot be edited client-side.
The session is resolved once per request into a ClientSession and passed to
handlers explicitly.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import jwt
from fastapi import Request, Response
from jwt.exceptions import PyJWTError

from portal.core.config import Settings, settings
from portal.core.timeutils import utc_now

logger = logging.getLogger(__name__)

AUTH_COOKIE = "client-auth"
ACCOUNTS_COOKIE = "client-accounts"
AUTH_FLAG = "1"
_ACCOUNTS_TOKEN_TYPE = "client_accounts"


@dataclass(frozen=True)
class ClientAccount:
    client_id: str
    client_code: str


@dataclass(frozen=True)
class ClientSession:
    """Per-request view of the client cookies."""

    authenticated: bool
    accounts: tuple[ClientAccount, ...] = field(default_factory=tuple)


ANONYMOUS = ClientSession(authenticated=False)


class ClientSessionManager:
    """Issue, validate and revoke client flag sessions."""

    def __init__(self, config: Settings = settings, clock: Callable[[], datetime] = utc_now):
        self.config = config
        self.ttl = timedelta(hours=config.client_session_ttl_hours)
        self.clock = clock

    def _encode_accounts(self, accounts: Iterable[ClientAccount]) -> str:
        now = self.clock()
        payload: dict[str, Any] = {
            "type": _ACCOUNTS_TOKEN_TYPE,
            "accounts": [
                {"client_id": account.client_id, "client_code": account.client_code}
                for account in accounts
            ],
            "iat": now,
            "exp": now + self.ttl,
        }
        return str(
            jwt.encode(
                payload,
                self.config.effective_session_secret_key,
                algorithm=self.config.session_algorithm,
            )
        )

    def _decode_accounts(self, token: str) -> tuple[ClientAccount, ...] | None:
        try:
            payload = jwt.decode(
                token,
                self.config.effective_session_secret_key,
                algorithms=[self.config.session_algorithm],
            )
        except PyJWTError as e:
            logger.debug(f"Rejected client accounts cookie: {e}")
            return None
        if payload.get("type") != _ACCOUNTS_TOKEN_TYPE:
            return None
        try:
            return tuple(
                ClientAccount(
                    client_id=str(item["client_id"]),
                    client_code=str(item["client_code"]),
                )
                for item in payload.get("accounts", [])
            )
        except (KeyError, TypeError):
            return None

    def issue(self, response: Response, accounts: Iterable[ClientAccount]) -> ClientSession:
        """Mark the response's client as authenticated for the given accounts."""
        accounts = tuple(accounts)
        max_age = int(self.ttl.total_seconds())
        response.set_cookie(
            AUTH_COOKIE,
            AUTH_FLAG,
            max_age=max_age,
            path="/",
            httponly=True,
            samesite="lax",
        )
        response.set_cookie(
            ACCOUNTS_COOKIE,
            self._encode_accounts(accounts),
            max_age=max_age,
            path="/",
            httponly=True,
            samesite="lax",
        )
        return ClientSession(authenticated=True, accounts=accounts)

    def validate(self, request: Request) -> ClientSession:
        """Resolve the request's cookies into a ClientSession (never raises)."""
        if request.cookies.get(AUTH_COOKIE) != AUTH_FLAG:
            return ANONYMOUS
        token = request.cookies.get(ACCOUNTS_COOKIE)
        if not token:
            return ANONYMOUS
        accounts = self._decode_accounts(token)
        if accounts is None:
            return ANONYMOUS
        return ClientSession(authenticated=True, accounts=accounts)

    def revoke(self, response: Response) -> None:
        """Overwrite both cookies with expired empty values."""
        for name in (AUTH_COOKIE, ACCOUNTS_COOKIE):
            response.set_cookie(
                name,
                "",
                max_age=0,
                expires=0,
                path="/",
                httponly=True,
                samesite="lax",
            )
