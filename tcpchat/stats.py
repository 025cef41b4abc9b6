"""Statistics tracking and reporting for the chat server."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import ChatService


class StatsManager:
    """
    Lifetime counters for the chat server.

    Tracks:
    - Connections accepted and closed
    - Lines and bytes in, bytes out
    - Logins, broadcasts and direct messages
    - Errors sent, idle timeouts and failed writes
    """

    def __init__(self, hub: ChatService) -> None:
        self.hub = hub
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections": 0,
            "disconnects": 0,
            "lines_in": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "logins": 0,
            "broadcasts": 0,
            "dms": 0,
            "errors_sent": 0,
            "idle_timeouts": 0,
            "write_failures": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a single log-friendly line."""
        from . import __version__

        started_mono = self.started_monotonic
        uptime_s = (time.monotonic() - started_mono) if started_mono is not None else 0.0

        session_stats = self.hub.registry.get_stats()
        c = self.snapshot()

        parts: list[str] = [
            f"tcpchat {__version__} stats",
            f"uptime_s={uptime_s:.1f}",
            f"clients_total={session_stats['total']} "
            f"clients_authenticated={session_stats['authenticated']}",
            "io: lines_in={} bytes_in={} bytes_out={} write_failures={}".format(
                c.get("lines_in", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
                c.get("write_failures", 0),
            ),
            "events: connections={} disconnects={} logins={} broadcasts={} dms={} "
            "errors_sent={} idle_timeouts={}".format(
                c.get("connections", 0),
                c.get("disconnects", 0),
                c.get("logins", 0),
                c.get("broadcasts", 0),
                c.get("dms", 0),
                c.get("errors_sent", 0),
                c.get("idle_timeouts", 0),
            ),
        ]
        return "; ".join(parts)
