"""Admin sessions held server-side.

The browser only ever sees an opaque session id in the ``admin-session``
cookie; the session itself lives in an in-process store. Issuance can be
split in two around a redirect: login hands out a short-lived signed
pending ticket, and the completion call turns that ticket into a stored
session and sets the cookie.
"""

import asyncio
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import Response
from jwt.exceptions import ExpiredSignatureError, PyJWTError

from portal.core.config import Settings, settings
from portal.core.timeutils import utc_now
from portal.services.errors import SessionExpiredError, SessionNotFoundError, TicketError

logger = logging.getLogger(__name__)

SESSION_COOKIE = "admin-session"
_TICKET_TYPE = "pending_admin_session"


def _generate_session_id() -> str:
    """Generate a cryptographically secure session ID."""
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class AdminIdentity:
    """The authenticated admin a session acts for."""

    user_id: str
    username: str
    display_name: str | None = None

    def to_claims(self) -> dict[str, Any]:
        return {"sub": self.user_id, "username": self.username, "name": self.display_name}

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "AdminIdentity":
        try:
            return cls(
                user_id=str(claims["sub"]),
                username=str(claims["username"]),
                display_name=claims.get("name"),
            )
        except KeyError as e:
            raise TicketError(f"Ticket missing claim: {e}") from e


@dataclass(frozen=True)
class PendingTicket:
    """A verified, not yet committed login ticket."""

    user: AdminIdentity
    jti: str
    valid_until: datetime


@dataclass(frozen=True)
class AdminSession:
    session_id: str
    user: AdminIdentity
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def expires_in(self, now: datetime) -> int:
        """Seconds of validity left (never negative)."""
        return max(0, int((self.expires_at - now).total_seconds()))


class AdminSessionStore:
    """In-memory session id -> AdminSession mapping.

    All access goes through an asyncio lock. Deleting a missing id is a
    no-op, so concurrent evictions of the same expired session are safe.
    """

    def __init__(self):
        self._sessions: dict[str, AdminSession] = {}
        # ticket jti -> moment after which the ticket is rejected anyway
        self._consumed_tickets: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def put(self, session: AdminSession) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session

    async def get(self, session_id: str) -> AdminSession | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def delete(self, session_id: str) -> bool:
        """Remove a session if present. Returns True if it existed."""
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def cleanup_expired(self, now: datetime) -> int:
        """Remove expired sessions. Returns count removed."""
        async with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
            return len(expired)

    async def consume_ticket(self, jti: str, valid_until: datetime, now: datetime) -> bool:
        """Mark a pending ticket as used. Returns False if it was used before.

        Entries are kept only while the ticket could still be presented.
        """
        async with self._lock:
            for used, until in list(self._consumed_tickets.items()):
                if until < now:
                    del self._consumed_tickets[used]
            if jti in self._consumed_tickets:
                return False
            self._consumed_tickets[jti] = valid_until
            return True

    def __len__(self) -> int:
        return len(self._sessions)


_store: AdminSessionStore | None = None


def get_admin_session_store() -> AdminSessionStore:
    """Process-wide admin session store."""
    global _store
    if _store is None:
        _store = AdminSessionStore()
    return _store


class AdminSessionManager:
    """Issue, validate and revoke admin sessions."""

    def __init__(
        self,
        store: AdminSessionStore,
        config: Settings = settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config
        self.session_ttl = timedelta(hours=config.admin_session_ttl_hours)
        self.ticket_ttl = timedelta(seconds=config.pending_ticket_ttl_seconds)
        self.clock = clock

    # --- Direct issuance ---

    async def issue(self, user: AdminIdentity) -> AdminSession:
        """Create and store a new session; only its id should leave the server."""
        now = self.clock()
        session = AdminSession(
            session_id=_generate_session_id(),
            user=user,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        await self.store.put(session)
        logger.info(f"Admin session created for {user.username}")
        return session

    # --- Two-phase issuance ---

    def create_ticket(self, user: AdminIdentity) -> str:
        """Sign a pending-session ticket valid for at most the ticket TTL."""
        now = self.clock()
        payload = {
            **user.to_claims(),
            "type": _TICKET_TYPE,
            "iat": int(now.timestamp()),
            "exp": now + self.ticket_ttl,
            "jti": secrets.token_hex(8),
        }
        return str(
            jwt.encode(
                payload,
                self.config.effective_session_secret_key,
                algorithm=self.config.session_algorithm,
            )
        )

    def decode_ticket(self, token: str) -> PendingTicket:
        """Verify a ticket's signature, type and freshness."""
        try:
            claims = jwt.decode(
                token,
                self.config.effective_session_secret_key,
                algorithms=[self.config.session_algorithm],
                options={"require": ["exp", "iat", "sub", "jti"]},
            )
        except ExpiredSignatureError as e:
            raise TicketError("Ticket has expired") from e
        except PyJWTError as e:
            raise TicketError(f"Invalid ticket: {e}") from e

        if claims.get("type") != _TICKET_TYPE:
            raise TicketError("Not a pending session ticket")

        # Freshness is re-checked against our own clock, independent of exp
        issued_at = datetime.fromtimestamp(float(claims["iat"]), UTC)
        if self.clock() - issued_at > self.ticket_ttl:
            raise TicketError("Ticket has expired")

        return PendingTicket(
            user=AdminIdentity.from_claims(claims),
            jti=str(claims["jti"]),
            valid_until=issued_at + self.ticket_ttl,
        )

    async def commit(self, token: str) -> AdminSession:
        """Turn a pending ticket into a stored session. Each ticket commits once."""
        ticket = self.decode_ticket(token)
        if not await self.store.consume_ticket(ticket.jti, ticket.valid_until, self.clock()):
            logger.warning(
                f"Replayed login ticket for {ticket.user.username}",
                extra={"event": "ticket_replayed", "username": ticket.user.username},
            )
            raise TicketError("Ticket has already been used")
        return await self.issue(ticket.user)

    # --- Validation and revocation ---

    async def validate(self, session_id: str | None) -> AdminSession:
        """Return the live session or raise.

        An expired session is evicted on read, so the next read of the same
        id reports SessionNotFoundError.
        """
        if not session_id:
            raise SessionNotFoundError("No session found")
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError("No session found")
        if session.is_expired(self.clock()):
            await self.store.delete(session_id)
            logger.info(f"Evicted expired admin session for {session.user.username}")
            raise SessionExpiredError("Session expired")
        return session

    async def revoke(self, session_id: str | None) -> bool:
        """Delete the session if it exists. Returns True if one was removed."""
        if not session_id:
            return False
        return await self.store.delete(session_id)

    # --- Cookie transport ---

    def set_cookie(self, response: Response, session: AdminSession) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            session.session_id,
            max_age=int(self.session_ttl.total_seconds()),
            path="/",
            httponly=True,
            secure=self.config.is_production,
            samesite="lax",
        )

    def clear_cookie(self, response: Response) -> None:
        response.set_cookie(
            SESSION_COOKIE,
            "",
            max_age=0,
            expires=0,
            path="/",
            httponly=True,
            secure=self.config.is_production,
            samesite="lax",
        )
