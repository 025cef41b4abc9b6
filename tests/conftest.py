from __future__ import annotations

import pytest

from tcpchat.config import ChatRuntimeConfig
from tcpchat.service import ChatService


class FakeConnection:
    """In-memory connection that records every line written to it."""

    def __init__(self, name: str, service: ChatService | None = None) -> None:
        self.conn_id = name
        self.service = service
        self.lines: list[str] = []
        self.closed = False
        self.fail_writes = False

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionError("closed")
        if self.fail_writes:
            raise BrokenPipeError("broken pipe")
        text = data.decode("utf-8")
        assert text.endswith("\n")
        self.lines.append(text[:-1])

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # The transport reports the end of the stream once the socket is shut.
        if self.service is not None:
            self.service.on_close(self)

    def take(self) -> list[str]:
        out, self.lines = self.lines, []
        return out


class ManualTimer:
    def __init__(self, interval: float, fn) -> None:
        self.interval = interval
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fn()


class ManualTimers:
    """Timer factory whose deadlines only fire when a test says so."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, interval: float, fn) -> ManualTimer:
        t = ManualTimer(interval, fn)
        self.created.append(t)
        return t

    def live(self) -> list[ManualTimer]:
        return [t for t in self.created if not t.cancelled]


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def service(timers: ManualTimers) -> ChatService:
    return ChatService(ChatRuntimeConfig(port=0), timer_factory=timers)


@pytest.fixture
def connect(service: ChatService):
    def _connect(name: str) -> FakeConnection:
        conn = FakeConnection(name, service)
        service.on_connect(conn)
        return conn

    return _connect


@pytest.fixture
def login(service: ChatService, connect):
    def _login(username: str) -> FakeConnection:
        conn = connect(f"conn-{username}")
        service.on_data(conn, f"LOGIN {username}\n".encode())
        assert conn.take() == ["OK"]
        return conn

    return _login
