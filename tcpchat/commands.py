"""Command dispatch for the line protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import (
    C_DM,
    C_LOGIN,
    C_MSG,
    C_PING,
    C_WHO,
    E_ALREADY_LOGGED_IN,
    E_CANNOT_MESSAGE_SELF,
    E_EMPTY_MESSAGE,
    E_INVALID_COMMAND,
    E_INVALID_USERNAME,
    E_NOT_LOGGED_IN,
    E_UNKNOWN_COMMAND,
    E_USER_NOT_FOUND,
    E_USERNAME_TAKEN,
    R_DM,
    R_MSG,
    R_OK,
    R_PONG,
    R_USER,
)
from .util import normalize_text, split_verb

if TYPE_CHECKING:
    from .messages import Outgoing
    from .service import ChatService
    from .session import Session


class CommandHandler:
    """
    Parses command lines and runs them against a session and the registry.

    Verbs are matched exactly on the first token, ignoring case. Replies are
    queued on `outgoing`; nothing is written from inside a handler.
    """

    def __init__(self, hub: ChatService) -> None:
        self.hub = hub
        self.log = logging.getLogger("tcpchat.commands")
        self._handlers = {
            C_LOGIN: self._handle_login,
            C_MSG: self._handle_msg,
            C_WHO: self._handle_who,
            C_DM: self._handle_dm,
            C_PING: self._handle_ping,
        }

    def dispatch(self, session: Session, line: str, outgoing: Outgoing) -> None:
        verb, args = split_verb(line)
        if not verb:
            return

        handler = self._handlers.get(verb)
        if handler is None:
            self.hub.message_helper.queue_error(outgoing, session.conn, E_UNKNOWN_COMMAND)
            return

        handler(session, args, outgoing)

    def _require_login(self, session: Session, outgoing: Outgoing) -> bool:
        if session.authenticated and session.username:
            return True
        self.hub.message_helper.queue_error(outgoing, session.conn, E_NOT_LOGGED_IN)
        return False

    def _handle_login(self, session: Session, args: list[str], outgoing: Outgoing) -> None:
        helper = self.hub.message_helper

        if session.authenticated or session.username is not None:
            # Identity is fixed for the life of the session.
            helper.queue_error(outgoing, session.conn, E_ALREADY_LOGGED_IN)
            return

        if not args:
            helper.queue_error(outgoing, session.conn, E_INVALID_COMMAND)
            return

        username = normalize_text(" ".join(args))
        if not username:
            helper.queue_error(outgoing, session.conn, E_INVALID_USERNAME)
            return

        if not self.hub.registry.authenticate(session, username):
            helper.queue_error(outgoing, session.conn, E_USERNAME_TAKEN)
            return

        session.touch()
        self.hub.stats_manager.inc("logins")
        helper.queue_line(outgoing, session.conn, R_OK)
        self.log.info("User logged in user=%r", username)

    def _handle_msg(self, session: Session, args: list[str], outgoing: Outgoing) -> None:
        helper = self.hub.message_helper

        if not self._require_login(session, outgoing):
            return

        if not args:
            helper.queue_error(outgoing, session.conn, E_INVALID_COMMAND)
            return

        text = normalize_text(" ".join(args))
        if not text:
            helper.queue_error(outgoing, session.conn, E_EMPTY_MESSAGE)
            return

        session.touch()
        recipients = helper.queue_broadcast(
            outgoing, f"{R_MSG} {session.username} {text}", exclude=session
        )
        self.hub.stats_manager.inc("broadcasts")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "MSG from=%r chars=%s recipients=%s", session.username, len(text), recipients
            )

    def _handle_who(self, session: Session, args: list[str], outgoing: Outgoing) -> None:
        if not self._require_login(session, outgoing):
            return

        session.touch()
        for other in self.hub.registry.snapshot_sessions(authenticated_only=True):
            self.hub.message_helper.queue_line(
                outgoing, session.conn, f"{R_USER} {other.username}"
            )

    def _handle_dm(self, session: Session, args: list[str], outgoing: Outgoing) -> None:
        helper = self.hub.message_helper

        if not self._require_login(session, outgoing):
            return

        if len(args) < 2:
            helper.queue_error(outgoing, session.conn, E_INVALID_COMMAND)
            return

        target_name = args[0]
        text = normalize_text(" ".join(args[1:]))
        if not text:
            helper.queue_error(outgoing, session.conn, E_EMPTY_MESSAGE)
            return

        target = self.hub.registry.find_by_username(target_name)
        if target is None:
            helper.queue_error(outgoing, session.conn, E_USER_NOT_FOUND, target_name)
            return

        if target is session or target_name == session.username:
            helper.queue_error(outgoing, session.conn, E_CANNOT_MESSAGE_SELF)
            return

        session.touch()
        helper.queue_line(outgoing, target.conn, f"{R_DM} {session.username} {text}")
        self.hub.stats_manager.inc("dms")

    def _handle_ping(self, session: Session, args: list[str], outgoing: Outgoing) -> None:
        session.touch()
        self.hub.message_helper.queue_line(outgoing, session.conn, R_PONG)
