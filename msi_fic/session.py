"""In-memory cookie sessions and the sign-in state derived from them."""

from __future__ import annotations

import enum
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

USER_KEY = "user"
AUTH_FLOW_KEY = "auth_flow"


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


def auth_state(session: Dict[str, Any]) -> AuthState:
    """Where a session stands in the sign-in flow."""

    if session.get(USER_KEY):
        return AuthState.AUTHENTICATED
    if session.get(AUTH_FLOW_KEY):
        return AuthState.AUTHENTICATING
    return AuthState.UNAUTHENTICATED


@dataclass
class SessionEntry:
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    last_access: float = field(default_factory=time.time)


class SessionHandle:
    """Lightweight wrapper returned to request handlers."""

    def __init__(self, manager: "SessionManager", session_id: str, entry: SessionEntry):
        self._manager = manager
        self._session_id = session_id
        self._entry = entry

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def data(self) -> Dict[str, Any]:
        return self._entry.data

    @property
    def user(self) -> Optional[Dict[str, Any]]:
        return self._entry.data.get(USER_KEY)

    @property
    def state(self) -> AuthState:
        return auth_state(self._entry.data)

    def commit(self, response) -> None:
        """Touch the session and attach the cookie to the response."""

        self._entry.last_access = time.time()
        self._manager._set_cookie(response, self._session_id)

    def rotate(self, response) -> Dict[str, Any]:
        """Replace the current session with an empty one and set the cookie."""

        new_session_id, new_entry = self._manager._rotate_session(self._session_id)
        self._session_id = new_session_id
        self._entry = new_entry
        self._manager._set_cookie(response, new_session_id)
        return self._entry.data


class SessionManager:
    """A minimal in-memory session store keyed by a secure random cookie.

    Sessions live in process memory, so a restart signs every user out and
    multiple workers do not share sign-ins.
    """

    def __init__(
        self,
        cookie_name: str,
        idle_timeout_seconds: int,
        absolute_timeout_seconds: int,
        *,
        cookie_secure: bool,
        cookie_samesite: str,
    ) -> None:
        self._cookie_name = cookie_name
        self._idle_timeout = idle_timeout_seconds
        self._absolute_timeout = absolute_timeout_seconds
        self._cookie_secure = cookie_secure
        self._cookie_samesite = cookie_samesite
        self._sessions: Dict[str, SessionEntry] = {}
        self._lock = threading.Lock()

    @property
    def cookie_name(self) -> str:
        return self._cookie_name

    def load_session(self, request) -> SessionHandle:
        """Retrieve or create the session associated with the incoming request."""

        session_id = request.cookies.get(self._cookie_name)
        now = time.time()
        with self._lock:
            self._purge_expired(now)
            entry = self._sessions.get(session_id) if session_id else None
            if entry is None:
                session_id, entry = self._create_session_locked()
            else:
                entry.last_access = now

        return SessionHandle(self, session_id, entry)

    def _create_session_locked(self) -> tuple[str, SessionEntry]:
        session_id = secrets.token_urlsafe(32)
        entry = SessionEntry()
        self._sessions[session_id] = entry
        return session_id, entry

    def _rotate_session(self, old_session_id: str) -> tuple[str, SessionEntry]:
        # Called when sign-in starts and again when it completes, so the
        # authenticated identifier was never seen before the callback.
        with self._lock:
            self._sessions.pop(old_session_id, None)
            return self._create_session_locked()

    def _purge_expired(self, now: float) -> None:
        expired = [
            session_id
            for session_id, entry in self._sessions.items()
            if self._is_expired(entry, now)
        ]
        for session_id in expired:
            del self._sessions[session_id]

    def _is_expired(self, entry: SessionEntry, now: float) -> bool:
        if self._idle_timeout and now - entry.last_access > self._idle_timeout:
            return True
        if self._absolute_timeout and now - entry.created_at > self._absolute_timeout:
            return True
        return False

    def _set_cookie(self, response, session_id: str) -> None:
        max_age = self._absolute_timeout if self._absolute_timeout > 0 else None
        response.set_cookie(
            self._cookie_name,
            session_id,
            max_age=max_age,
            httponly=True,
            secure=self._cookie_secure,
            samesite=self._cookie_samesite,
            path="/",
        )
