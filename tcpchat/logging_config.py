from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import ChatRuntimeConfig
from .util import expand_path

# Package logger and the component loggers below it.
ROOT_LOGGER = "tcpchat"
CHAT_LOGGERS = ("hub", "session", "commands", "idle", "conn")

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def _parse_level(value: str | None) -> int:
    text = str(value or "").strip().upper()
    if not text:
        return logging.INFO
    try:
        return _LEVELS[text]
    except KeyError:
        raise ValueError(f"unknown log level {value!r}") from None


def _component_levels(levels: dict[str, str]) -> dict[str, int]:
    out: dict[str, int] = {}
    for name, value in (levels or {}).items():
        short = str(name).removeprefix(f"{ROOT_LOGGER}.")
        if short not in CHAT_LOGGERS:
            raise ValueError(
                f"unknown logger {name!r} (expected one of {', '.join(CHAT_LOGGERS)})"
            )
        out[short] = _parse_level(value)
    return out


def _file_handler(log_file: str) -> logging.Handler:
    p = Path(expand_path(log_file))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: ChatRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> logging.Logger:
    """Configure the tcpchat logger tree.

    Handlers go on the `tcpchat` logger, which stops propagation so an
    embedding application's root handlers do not print every line twice.
    `cfg.log_levels` can raise or lower single components, e.g.
    ``{"conn": "DEBUG"}``. Calling this again replaces the previous setup.

    Raises ValueError for an unknown level or logger name.
    """
    level = _parse_level(override_level or cfg.log_level)
    component_levels = _component_levels(cfg.log_levels)

    log_file = cfg.log_file if override_file is None else override_file
    log_file = (log_file or "").strip() or None

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=(cfg.log_format or "").strip() or "%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt=cfg.log_datefmt or None,
    )

    logger = logging.getLogger(ROOT_LOGGER)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    for h in handlers:
        h.setFormatter(formatter)
        logger.addHandler(h)
    logger.setLevel(level)
    logger.propagate = False

    for short in CHAT_LOGGERS:
        # NOTSET defers to the package level.
        logging.getLogger(f"{ROOT_LOGGER}.{short}").setLevel(
            component_levels.get(short, logging.NOTSET)
        )

    logging.captureWarnings(True)
    return logger
