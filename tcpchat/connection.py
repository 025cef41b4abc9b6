"""Socket transport for one client connection."""

from __future__ import annotations

import logging
import queue
import socket
import threading
from typing import Callable

from .constants import DEFAULT_CLOSE_TIMEOUT_S, DEFAULT_MAX_PENDING_WRITES

_CLOSE = object()


class SocketConnection:
    """
    Byte-stream connection backed by a connected TCP socket.

    A reader thread hands received chunks to `on_data` and reports the end of
    the stream (EOF or error) to `on_close` exactly once. Writes go through a
    bounded outbox drained by a writer thread, so write() never blocks on a
    slow peer.

    close() is a graceful half-close: the writer flushes what is already
    queued and then shuts down the sending side, and the reader waits for the
    peer's EOF. If that has not happened within `close_timeout_s` (the peer
    stopped reading, or never closes its side) the socket is shut down in
    both directions, which unblocks both threads.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: tuple | str | None = None,
        *,
        max_pending_writes: int = DEFAULT_MAX_PENDING_WRITES,
        close_timeout_s: float = DEFAULT_CLOSE_TIMEOUT_S,
        recv_size: int = 4096,
    ) -> None:
        self.sock = sock
        if isinstance(address, tuple) and len(address) >= 2:
            self.conn_id = f"{address[0]}:{address[1]}"
        else:
            self.conn_id = str(address) if address else f"fd{sock.fileno()}"
        self.recv_size = int(recv_size)
        self.close_timeout_s = max(0.0, float(close_timeout_s))
        self.log = logging.getLogger("tcpchat.conn")

        self._outbox: queue.Queue = queue.Queue(maxsize=max(1, int(max_pending_writes)))
        self._lock = threading.Lock()
        self._closing = False
        self._closed_reported = False
        self._close_timer: threading.Timer | None = None

        self._reader: threading.Thread | None = None
        self._writer: threading.Thread | None = None

    def __repr__(self) -> str:
        return f"<SocketConnection {self.conn_id}>"

    @property
    def closing(self) -> bool:
        with self._lock:
            return self._closing

    def start(
        self,
        on_data: Callable[[SocketConnection, bytes], None],
        on_close: Callable[[SocketConnection], None],
    ) -> None:
        self._writer = threading.Thread(
            target=self._write_loop, name=f"tcpchat-write-{self.conn_id}", daemon=True
        )
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(on_data, on_close),
            name=f"tcpchat-read-{self.conn_id}",
            daemon=True,
        )
        self._writer.start()
        self._reader.start()

    def join(self, timeout: float | None = None) -> None:
        for t in (self._reader, self._writer):
            if t is not None and t is not threading.current_thread():
                t.join(timeout)

    def write(self, data: bytes) -> None:
        with self._lock:
            if self._closing:
                raise ConnectionError("connection is closing")
            try:
                self._outbox.put_nowait(bytes(data))
            except queue.Full:
                raise BlockingIOError("outbox full") from None

    def close(self) -> None:
        """Flush queued writes, then half-close. Idempotent and bounded."""
        with self._lock:
            if self._closing:
                return
            self._closing = True
            timer = threading.Timer(self.close_timeout_s, self._close_timed_out)
            timer.daemon = True
            timer.name = f"tcpchat-close-{self.conn_id}"
            self._close_timer = timer
        timer.start()

        try:
            self._outbox.put_nowait(_CLOSE)
        except queue.Full:
            # Peer is not reading; nothing queued will get through anyway.
            self.log.warning("Outbox full on close conn=%s; aborting", self.conn_id)
            self.abort()

    def abort(self) -> None:
        """Drop queued writes and shut the socket down immediately."""
        with self._lock:
            self._closing = True
        self._shutdown(socket.SHUT_RDWR)

    def _close_timed_out(self) -> None:
        self.log.debug(
            "Close did not complete in %.1fs conn=%s; aborting",
            self.close_timeout_s,
            self.conn_id,
        )
        self.abort()

    def _shutdown(self, how: int) -> None:
        try:
            self.sock.shutdown(how)
        except OSError:
            pass

    def _write_loop(self) -> None:
        while True:
            item = self._outbox.get()
            if item is _CLOSE:
                self._shutdown(socket.SHUT_WR)
                return
            try:
                self.sock.sendall(item)
            except OSError as e:
                self.log.debug("Write failed conn=%s err=%s", self.conn_id, e)
                self.abort()
                return

    def _read_loop(
        self,
        on_data: Callable[[SocketConnection, bytes], None],
        on_close: Callable[[SocketConnection], None],
    ) -> None:
        try:
            while True:
                try:
                    data = self.sock.recv(self.recv_size)
                except OSError as e:
                    with self._lock:
                        closing = self._closing
                    if not closing:
                        self.log.info("Socket error conn=%s err=%s", self.conn_id, e)
                    break
                if not data:
                    break
                on_data(self, data)
        finally:
            with self._lock:
                self._closing = True
                report = not self._closed_reported
                self._closed_reported = True
                timer, self._close_timer = self._close_timer, None
            if timer is not None:
                timer.cancel()
            # Unblock a writer that is still waiting for work.
            try:
                self._outbox.put_nowait(_CLOSE)
            except queue.Full:
                pass
            if report:
                try:
                    on_close(self)
                finally:
                    # Wakes a writer still blocked in sendall().
                    self._shutdown(socket.SHUT_RDWR)
                    try:
                        self.sock.close()
                    except OSError:
                        pass
