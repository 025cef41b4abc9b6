from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace

from .constants import (
    DEFAULT_CLOSE_TIMEOUT_S,
    DEFAULT_IDLE_TIMEOUT_MS,
    DEFAULT_MAX_LINE_BYTES,
    DEFAULT_MAX_PENDING_WRITES,
    DEFAULT_PORT,
    IDLE_TIMEOUT_OPTION,
)


@dataclass(frozen=True)
class ChatRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    idle_timeout_ms: int = DEFAULT_IDLE_TIMEOUT_MS
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES
    max_pending_writes: int = DEFAULT_MAX_PENDING_WRITES
    close_timeout_s: float = DEFAULT_CLOSE_TIMEOUT_S
    shutdown_grace_s: float = 2.0
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
    # Per-component levels keyed by logger name, e.g. {"conn": "DEBUG"}.
    log_levels: dict[str, str] = field(default_factory=dict)


_INT_KEYS = ("port", "idle_timeout_ms", "max_line_bytes", "max_pending_writes")


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: ChatRuntimeConfig, data: dict) -> ChatRuntimeConfig:
    """Overlay values from a parsed TOML document onto `base`.

    Keys may sit at top level or in a [server] table; [logging] keys map to
    the log_* fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return base

    server = data.get("server")
    if isinstance(server, dict):
        data = {**data, **server}

    if IDLE_TIMEOUT_OPTION in data and "idle_timeout_ms" not in data:
        data = {**data, "idle_timeout_ms": data[IDLE_TIMEOUT_OPTION]}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "console", "file", "format", "datefmt", "levels"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _INT_KEYS:
        if key in updates:
            updates[key] = int(updates[key])
    for key in ("close_timeout_s", "shutdown_grace_s"):
        if key in updates:
            updates[key] = float(updates[key])
    if "log_console" in updates:
        updates["log_console"] = bool(updates["log_console"])
    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None
    if "log_levels" in updates:
        levels = updates["log_levels"]
        if not isinstance(levels, dict):
            raise ValueError("[logging.levels] must be a table")
        updates["log_levels"] = {str(k): str(v) for k, v in levels.items()}

    return replace(base, **updates) if updates else base


def apply_environment(cfg: ChatRuntimeConfig, environ=None) -> ChatRuntimeConfig:
    """Honour PORT from the environment."""
    env = os.environ if environ is None else environ
    raw = str(env.get("PORT", "")).strip()
    if not raw:
        return cfg
    try:
        return replace(cfg, port=int(raw))
    except ValueError:
        raise ValueError(f"invalid PORT environment value {raw!r}") from None
