"""Reply queueing and best-effort delivery for the chat server."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import ENCODING, LINE_TERMINATOR, R_ERR
from .util import normalize_text

if TYPE_CHECKING:
    from .service import ChatService
    from .session import Session

Outgoing = list[tuple[Any, str]]


class MessageHelper:
    """
    Builds outgoing lines and writes them.

    Handlers never write directly. They append (connection, line) pairs to an
    outgoing list while they inspect shared state, and the caller flushes that
    list afterwards, once no lock is held. Each write is independent: a
    failing peer is logged and skipped.
    """

    def __init__(self, hub: ChatService) -> None:
        self.hub = hub
        self.log = logging.getLogger("tcpchat.hub")

    def queue_line(self, outgoing: Outgoing, conn: Any, line: str) -> None:
        outgoing.append((conn, line))

    def queue_error(
        self, outgoing: Outgoing, conn: Any, code: str, arg: str | None = None
    ) -> None:
        self.hub.stats_manager.inc("errors_sent")
        line = f"{R_ERR} {code}" if arg is None else f"{R_ERR} {code} {arg}"
        self.queue_line(outgoing, conn, line)

    def queue_broadcast(
        self,
        outgoing: Outgoing,
        text: str,
        *,
        exclude: Session | None = None,
    ) -> int:
        """
        Queue `text` for every authenticated session except `exclude`.

        Recipients come from a registry snapshot, so sessions joining while
        the lines are written may miss this message. Returns the recipient
        count.
        """
        line = normalize_text(text)
        if not line:
            return 0

        count = 0
        for sess in self.hub.registry.snapshot_sessions(authenticated_only=True):
            if sess is exclude:
                continue
            self.queue_line(outgoing, sess.conn, line)
            count += 1
        return count

    def flush(self, outgoing: Outgoing) -> None:
        for conn, line in outgoing:
            self.send_line(conn, line)
        outgoing.clear()

    def send_line(self, conn: Any, line: str) -> bool:
        payload = line.encode(ENCODING) + LINE_TERMINATOR
        try:
            conn.write(payload)
        except BlockingIOError:
            self.hub.stats_manager.inc("write_failures")
            self.log.warning(
                "Dropping line for slow reader conn=%s", getattr(conn, "conn_id", "-")
            )
            return False
        except OSError as e:
            self.hub.stats_manager.inc("write_failures")
            self.log.debug(
                "Send failed conn=%s bytes=%s err=%s",
                getattr(conn, "conn_id", "-"),
                len(payload),
                e,
            )
            return False
        except Exception:
            self.hub.stats_manager.inc("write_failures")
            self.log.warning(
                "Send failed conn=%s bytes=%s",
                getattr(conn, "conn_id", "-"),
                len(payload),
                exc_info=True,
            )
            return False

        self.hub.stats_manager.inc("bytes_out", len(payload))
        return True
