from __future__ import annotations

import logging
import threading
from typing import Any

from .session import Session


class SessionRegistry:
    """
    Process-wide record of live sessions and reserved usernames.

    Every operation runs under one internal lock, so no caller can observe a
    session that is half inserted or a username reserved without its owner
    being authenticated. Callers never see the backing structures; iteration
    goes through snapshot_sessions(), which returns a copy taken under the
    lock so writes to peers happen with the lock released.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[Any, Session] = {}  # connection -> session
        self._reserved: dict[str, Session] = {}  # username -> owner
        self.log = logging.getLogger("tcpchat.session")

    def add(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.conn] = session

    def get(self, conn: Any) -> Session | None:
        with self._lock:
            return self._sessions.get(conn)

    def remove(self, conn: Any) -> Session | None:
        """
        Remove a session and release its username.

        Returns the removed session, or None if it was already gone, which
        makes repeated disconnect notifications harmless.
        """
        with self._lock:
            sess = self._sessions.pop(conn, None)
            if sess is None:
                return None
            sess.closed = True
            if sess.username and self._reserved.get(sess.username) is sess:
                self._reserved.pop(sess.username, None)
            self.log.debug("Removed %s remaining=%d", sess.label, len(self._sessions))
            return sess

    def try_reserve(self, username: str, owner: Session) -> bool:
        """
        Bind `username` to `owner` if nobody holds it. Returns False if taken.

        The reservation and the owner's promotion happen together, so a name
        is never held by a session that is not authenticated under it.
        """
        with self._lock:
            if username in self._reserved:
                return False
            self._reserved[username] = owner
            owner.username = username
            owner.authenticated = True
            return True

    def authenticate(self, session: Session, username: str) -> bool:
        """
        Reserve `username` for `session` and promote it, as one step.

        Fails if the name is taken, the session already has a username, or
        the session has been removed in the meantime.
        """
        with self._lock:
            if self._sessions.get(session.conn) is not session:
                return False
            if session.authenticated or session.username is not None:
                return False
            if not self.try_reserve(username, session):
                return False
            self.log.debug("Reserved username=%r for %s", username, session.label)
            return True

    def release(self, username: str) -> None:
        """
        Free `username`. The session holding it stops being authenticated, so
        no authenticated session is ever left without its name. It keeps the
        name as a label and cannot log in again.
        """
        with self._lock:
            owner = self._reserved.pop(username, None)
            if owner is not None:
                owner.authenticated = False
                self.log.debug("Released username=%r from %s", username, owner.label)

    def is_online(self, username: str) -> bool:
        with self._lock:
            return username in self._reserved

    def find_by_username(self, username: str) -> Session | None:
        with self._lock:
            sess = self._reserved.get(username)
            if sess is None or sess.closed:
                return None
            return sess

    def snapshot_sessions(self, *, authenticated_only: bool = False) -> list[Session]:
        with self._lock:
            if authenticated_only:
                return [
                    s for s in self._sessions.values() if s.authenticated and s.username
                ]
            return list(self._sessions.values())

    def clear_all(self) -> list[Session]:
        """Empty the registry and return every session that was in it."""
        with self._lock:
            sessions = list(self._sessions.values())
            for sess in sessions:
                sess.closed = True
            self._sessions.clear()
            self._reserved.clear()
            return sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get_stats(self) -> dict[str, int]:
        with self._lock:
            total = len(self._sessions)
            authenticated = sum(1 for s in self._sessions.values() if s.authenticated)
            reserved = len(self._reserved)
        return {
            "total": total,
            "authenticated": authenticated,
            "reserved": reserved,
        }
