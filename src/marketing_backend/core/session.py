"""
Server-side session state.

A session maps an opaque id (carried by the browser in a signed cookie, see
`marketing_backend.core.auth`) to the authenticated user, the bound shop and
the in-flight OAuth nonce. Handlers never touch the stored object directly:
they go through SessionContext, which reads and writes individual fields.
"""

import logging
import threading
from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Protocol

from pydantic import BaseModel

logger = logging.getLogger("session")


class SessionData(BaseModel):
    """Everything stored for one browser session."""

    user_id: Optional[int] = None
    shop_id: Optional[int] = None
    oauth_nonce: Optional[str] = None
    oauth_shop: Optional[str] = None
    expires_at: datetime


class SessionStore(Protocol):
    """Storage contract for session data keyed by session id."""

    def get(self, session_id: str) -> Optional[SessionData]: ...

    def update(self, session_id: str, **fields: Any) -> SessionData: ...

    def delete(self, session_id: str) -> None: ...


class InMemorySessionStore:
    """
    Process-wide session store with expiry.

    Expired entries are pruned lazily, at most once per `check_period`.
    """

    def __init__(self, max_age: int = 24 * 60 * 60, check_period: int = 60 * 60):
        self.max_age = timedelta(seconds=max_age)
        self.check_period = timedelta(seconds=check_period)
        self._sessions: dict[str, SessionData] = {}
        self._lock = threading.Lock()
        self._last_pruned = datetime.now(UTC)

    def get(self, session_id: str) -> Optional[SessionData]:
        with self._lock:
            self._prune()
            data = self._sessions.get(session_id)
            if data is None or data.expires_at <= datetime.now(UTC):
                return None
            return data.model_copy()

    def update(self, session_id: str, **fields: Any) -> SessionData:
        """Set `fields` on the session, creating it if needed, and renew its expiry."""
        with self._lock:
            now = datetime.now(UTC)
            current = self._sessions.get(session_id)
            if current is None or current.expires_at <= now:
                current = SessionData(expires_at=now)
            data = current.model_copy(update={**fields, "expires_at": now + self.max_age})
            self._sessions[session_id] = data
            return data.model_copy()

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _prune(self) -> None:
        now = datetime.now(UTC)
        if now - self._last_pruned < self.check_period:
            return
        expired = [sid for sid, data in self._sessions.items() if data.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Pruned %d expired sessions", len(expired))
        self._last_pruned = now


class SessionContext:
    """Field-level access to one session, passed into each handler."""

    def __init__(self, store: SessionStore, session_id: str):
        self.store = store
        self.session_id = session_id

    def _data(self) -> Optional[SessionData]:
        return self.store.get(self.session_id)

    @property
    def exists(self) -> bool:
        return self._data() is not None

    @property
    def shop_id(self) -> Optional[int]:
        data = self._data()
        return data.shop_id if data else None

    @property
    def oauth_state(self) -> tuple[Optional[str], Optional[str]]:
        """The (nonce, shop domain) pair issued by the last OAuth initiation."""
        data = self._data()
        if data is None:
            return None, None
        return data.oauth_nonce, data.oauth_shop

    def begin_oauth(self, nonce: str, shop: str) -> None:
        """Record a freshly issued nonce, replacing any earlier one."""
        self.store.update(self.session_id, oauth_nonce=nonce, oauth_shop=shop)

    def clear_oauth(self) -> None:
        if self.exists:
            self.store.update(self.session_id, oauth_nonce=None, oauth_shop=None)

    def bind_shop(self, shop_id: int) -> None:
        self.store.update(self.session_id, shop_id=shop_id)
