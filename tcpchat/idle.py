"""Per-session inactivity deadline."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

TimerFactory = Callable[[float, Callable[[], None]], Any]


def _thread_timer(interval: float, fn: Callable[[], None]) -> threading.Timer:
    t = threading.Timer(interval, fn)
    t.daemon = True
    t.name = "tcpchat-idle"
    t.start()
    return t


class IdleTimer:
    """
    Owns the one pending idle deadline of a session.

    reset() replaces the pending deadline. The underlying timer cannot always
    be cancelled once its thread has woken, so each deadline carries a
    generation number that is checked under the lock at fire time; a deadline
    superseded by reset() or cancel() never calls on_expire.

    `timer_factory(interval_s, fn)` must schedule `fn` and return an object
    with a cancel() method.
    """

    def __init__(
        self,
        timeout_s: float,
        on_expire: Callable[[], None],
        *,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("idle timeout must be positive")
        self.timeout_s = float(timeout_s)
        self.on_expire = on_expire
        self._timer_factory = timer_factory or _thread_timer
        self._lock = threading.Lock()
        self._generation = 0
        self._handle: Any = None
        self._cancelled = False
        self.log = logging.getLogger("tcpchat.idle")

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None

    def reset(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._generation += 1
            gen = self._generation
            self._cancel_handle_locked()
            self._handle = self._timer_factory(self.timeout_s, lambda: self._fire(gen))

    def cancel(self) -> None:
        """Suppress any pending deadline for good. Safe to call repeatedly."""
        with self._lock:
            self._cancelled = True
            self._generation += 1
            self._cancel_handle_locked()

    def _cancel_handle_locked(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.cancel()
            except Exception:
                self.log.debug("Idle timer cancel failed", exc_info=True)

    def _fire(self, gen: int) -> None:
        with self._lock:
            if self._cancelled or gen != self._generation:
                return
            self._handle = None

        # Outside the lock: on_expire closes the connection, which may call
        # back into cancel() on this timer.
        try:
            self.on_expire()
        except Exception:
            self.log.exception("Idle expiry handler failed")
