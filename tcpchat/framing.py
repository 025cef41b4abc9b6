"""Newline framing for the inbound byte stream of one connection."""

from __future__ import annotations

from .constants import ENCODING, LINE_TERMINATOR


class LineTooLongError(ValueError):
    """
    Raised when an unterminated line grows past the configured bound.

    `lines` holds the complete lines that arrived in the same chunk ahead of
    the over-long tail; they are still valid commands.
    """

    def __init__(self, message: str, lines: list[str] | None = None) -> None:
        super().__init__(message)
        self.lines = list(lines or ())


class LineFramer:
    """
    Turns arbitrary byte chunks into complete command lines.

    Each connection owns its own framer. Bytes after the last line feed are
    kept and prefixed to the next chunk; lines that are blank after trimming
    are dropped.
    """

    def __init__(self, max_line_bytes: int = 0) -> None:
        self.max_line_bytes = int(max_line_bytes)
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[str]:
        self._buffer.extend(data)

        segments = bytes(self._buffer).split(LINE_TERMINATOR)
        tail = segments.pop()
        self._buffer = bytearray(tail)

        lines: list[str] = []
        for seg in segments:
            # Decode per line so a multi-byte character split across reads
            # is only decoded once it is complete.
            text = seg.decode(ENCODING, errors="replace")
            if text.strip():
                lines.append(text)

        if self.max_line_bytes > 0 and len(self._buffer) > self.max_line_bytes:
            size = len(self._buffer)
            self._buffer.clear()
            raise LineTooLongError(
                f"unterminated line of {size} bytes exceeds {self.max_line_bytes}",
                lines,
            )

        return lines
