from __future__ import annotations

import logging
import signal
import socket
import threading
import time
from typing import Any

from .commands import CommandHandler
from .config import ChatRuntimeConfig
from .connection import SocketConnection
from .constants import R_INFO, SHUTDOWN_NOTICE
from .framing import LineFramer, LineTooLongError
from .idle import IdleTimer, TimerFactory
from .messages import MessageHelper, Outgoing
from .registry import SessionRegistry
from .session import Session
from .stats import StatsManager


class ChatService:
    def __init__(
        self,
        config: ChatRuntimeConfig,
        *,
        timer_factory: TimerFactory | None = None,
    ) -> None:
        if int(config.idle_timeout_ms) <= 0:
            raise ValueError("idle_timeout_ms must be positive")

        self.config = config
        self.log = logging.getLogger("tcpchat.hub")
        self._timer_factory = timer_factory

        self._shutdown = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

        # Usernames and live sessions; the only state shared between
        # connections.
        self.registry = SessionRegistry()

        self.stats_manager = StatsManager(self)
        self.message_helper = MessageHelper(self)
        self.command_handler = CommandHandler(self)

        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._connections: set[SocketConnection] = set()
        self._connections_lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int] | None:
        """The bound (host, port) once start() has run."""
        if self._listener is None:
            return None
        try:
            host, port = self._listener.getsockname()[:2]
        except OSError:
            return None
        return host, port

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    # Connection callbacks

    def on_connect(self, conn: Any) -> Session:
        """Register a new, unauthenticated session and arm its idle deadline."""
        sess = Session(conn=conn, framer=LineFramer(self.config.max_line_bytes))
        sess.idle_timer = IdleTimer(
            self.config.idle_timeout_ms / 1000.0,
            lambda: self._on_idle_expired(sess),
            timer_factory=self._timer_factory,
        )
        self.registry.add(sess)
        self.stats_manager.inc("connections")
        sess.idle_timer.reset()

        self.log.info("Client connected conn=%s", getattr(conn, "conn_id", "-"))
        return sess

    def on_data(self, conn: Any, data: bytes) -> None:
        sess = self.registry.get(conn)
        if sess is None:
            return

        self.stats_manager.inc("bytes_in", len(data))
        too_long: LineTooLongError | None = None
        try:
            lines = sess.framer.feed(data)
        except LineTooLongError as e:
            lines = e.lines
            too_long = e

        outgoing: Outgoing = []
        for line in lines:
            if sess.closed:
                break
            self.stats_manager.inc("lines_in")
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug("RX %s line=%r", sess.label, line)
            try:
                self.command_handler.dispatch(sess, line, outgoing)
            except Exception:
                self.log.exception("Command failed %s line=%r", sess.label, line)

        self.message_helper.flush(outgoing)

        if too_long is not None:
            self.log.warning("Closing conn=%s: %s", getattr(conn, "conn_id", "-"), too_long)
            self._close_conn(conn)

    def on_close(self, conn: Any) -> None:
        """Transport reports the end of a connection (EOF, error or close)."""
        self.disconnect(conn)

    # Disconnect path

    def disconnect(self, conn: Any, *, announce: bool = True) -> Session | None:
        """
        Tear down the session for `conn`.

        Cancels the idle deadline, frees the username and tells the remaining
        users. A second call for the same connection finds nothing to remove
        and does nothing.
        """
        sess = self.registry.remove(conn)
        if sess is None:
            return None

        if sess.idle_timer is not None:
            sess.idle_timer.cancel()
        self.stats_manager.inc("disconnects")

        if sess.authenticated and sess.username:
            self.log.info("User disconnected user=%r", sess.username)
            if announce:
                outgoing: Outgoing = []
                self.message_helper.queue_broadcast(
                    outgoing, f"{R_INFO} {sess.username} disconnected", exclude=sess
                )
                self.message_helper.flush(outgoing)
        else:
            self.log.info("Client disconnected conn=%s", getattr(conn, "conn_id", "-"))

        return sess

    def _on_idle_expired(self, sess: Session) -> None:
        if sess.closed:
            return
        self.stats_manager.inc("idle_timeouts")
        self.log.info("Client %s timed out due to inactivity", sess.label)
        self._close_conn(sess.conn)

    def _close_conn(self, conn: Any) -> None:
        try:
            conn.close()
        except Exception:
            self.log.debug(
                "Close failed conn=%s", getattr(conn, "conn_id", "-"), exc_info=True
            )

    # Listener

    def start(self) -> None:
        """Bind the listening socket and start accepting. Bind errors propagate."""
        self.stats_manager.set_start_time()

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.config.host, int(self.config.port)))
            listener.listen()
            # accept() polls so the loop notices shutdown.
            listener.settimeout(0.5)
        except OSError:
            listener.close()
            raise
        self._listener = listener

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="tcpchat-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address or (self.config.host, self.config.port)
        self.log.info("Chat server listening on %s:%s", host, port)
        self.log.info(
            "Policy idle_timeout_ms=%s max_line_bytes=%s max_pending_writes=%s",
            self.config.idle_timeout_ms,
            self.config.max_line_bytes,
            self.config.max_pending_writes,
        )

    def _accept_loop(self) -> None:
        listener = self._listener
        while listener is not None and not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._shutdown.is_set():
                    break
                self.log.exception("Accept failed")
                time.sleep(0.1)
                continue

            if self._shutdown.is_set():
                try:
                    sock.close()
                except OSError:
                    pass
                break

            sock.settimeout(None)
            conn = SocketConnection(
                sock,
                addr,
                max_pending_writes=self.config.max_pending_writes,
                close_timeout_s=self.config.close_timeout_s,
            )
            with self._connections_lock:
                self._connections.add(conn)
            self.on_connect(conn)
            conn.start(self.on_data, self._on_transport_closed)

    def _on_transport_closed(self, conn: SocketConnection) -> None:
        try:
            self.on_close(conn)
        finally:
            with self._connections_lock:
                self._connections.discard(conn)

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self._shutdown.set())
        signal.signal(signal.SIGTERM, lambda *_: self._shutdown.set())

        while not self._shutdown.is_set():
            time.sleep(0.25)

        self.stop()

    # Shutdown

    def stop(self) -> None:
        """
        Notify every user, close every connection, then close the listener.

        Idempotent. Connections that are already closed are skipped quietly.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        self.log.info("Shutting down server...")
        self._shutdown.set()

        sessions = self.registry.snapshot_sessions()

        outgoing: Outgoing = []
        for sess in sessions:
            if sess.authenticated and sess.username:
                self.message_helper.queue_line(
                    outgoing, sess.conn, f"{R_INFO} {SHUTDOWN_NOTICE}"
                )
        self.message_helper.flush(outgoing)

        for sess in sessions:
            # Everyone is leaving; no per-user disconnect notices.
            self.disconnect(sess.conn, announce=False)
            self._close_conn(sess.conn)

        # Sessions that connected after the snapshot was taken.
        for sess in self.registry.clear_all():
            if sess.idle_timer is not None:
                sess.idle_timer.cancel()
            self._close_conn(sess.conn)

        with self._connections_lock:
            conns = list(self._connections)
        deadline = time.monotonic() + max(0.0, float(self.config.shutdown_grace_s))
        for conn in conns:
            conn.join(max(0.0, deadline - time.monotonic()))

        if self._listener is not None:
            try:
                self._listener.close()
            except OSError:
                pass
        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join(max(0.0, deadline - time.monotonic()) or 0.1)

        self.log.info(self.stats_manager.format_stats())
        self.log.info("Server closed")
