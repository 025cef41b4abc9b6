# Line protocol constants (verbs, reply prefixes, error codes)

DEFAULT_PORT = 4000

# Name of the idle timeout option as accepted in config files.
IDLE_TIMEOUT_OPTION = "idleTimeoutMs"
DEFAULT_IDLE_TIMEOUT_MS = 60_000

DEFAULT_MAX_LINE_BYTES = 64 * 1024
DEFAULT_MAX_PENDING_WRITES = 1024

# Seconds a graceful close may take before the socket is shut down hard.
DEFAULT_CLOSE_TIMEOUT_S = 1.0

LINE_TERMINATOR = b"\n"
ENCODING = "utf-8"

# Client -> server verbs
C_LOGIN = "LOGIN"
C_MSG = "MSG"
C_WHO = "WHO"
C_DM = "DM"
C_PING = "PING"

# Server -> client reply prefixes
R_OK = "OK"
R_PONG = "PONG"
R_USER = "USER"
R_MSG = "MSG"
R_DM = "DM"
R_INFO = "INFO"
R_ERR = "ERR"

# Error codes (sent as "ERR <code>[ <arg>]")
E_INVALID_COMMAND = "invalid-command"
E_INVALID_USERNAME = "invalid-username"
E_USERNAME_TAKEN = "username-taken"
E_NOT_LOGGED_IN = "not-logged-in"
E_EMPTY_MESSAGE = "empty-message"
E_USER_NOT_FOUND = "user-not-found"
E_CANNOT_MESSAGE_SELF = "cannot-message-self"
E_UNKNOWN_COMMAND = "unknown-command"
E_ALREADY_LOGGED_IN = "already-logged-in"

SHUTDOWN_NOTICE = "Server is shutting down"
