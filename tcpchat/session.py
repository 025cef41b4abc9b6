from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .framing import LineFramer

if TYPE_CHECKING:
    from .idle import IdleTimer


class SessionState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass(eq=False)
class Session:
    """Server-side state for one live connection."""

    conn: Any
    framer: LineFramer = field(default_factory=LineFramer)
    username: str | None = None
    authenticated: bool = False
    closed: bool = False
    connected_at: float = field(default_factory=time.monotonic)
    last_activity_at: float = field(default_factory=time.monotonic)
    idle_timer: IdleTimer | None = None

    @property
    def state(self) -> SessionState:
        if self.closed:
            return SessionState.CLOSED
        if self.authenticated:
            return SessionState.AUTHENTICATED
        return SessionState.UNAUTHENTICATED

    @property
    def label(self) -> str:
        """Short description for log lines."""
        conn_id = getattr(self.conn, "conn_id", None) or "-"
        return f"{self.username or 'unknown'}@{conn_id}"

    def touch(self) -> None:
        """Record accepted activity and push the idle deadline out."""
        self.last_activity_at = time.monotonic()
        if self.idle_timer is not None:
            self.idle_timer.reset()
