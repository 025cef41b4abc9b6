from __future__ import annotations

import argparse
import errno
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import ChatRuntimeConfig, apply_config_data, apply_environment, load_toml
from .constants import DEFAULT_IDLE_TIMEOUT_MS, DEFAULT_PORT
from .logging_config import configure_logging
from .service import ChatService


def default_config_path() -> Path:
    home = os.environ.get("TCPCHAT_HOME")
    base = Path(home) if home else Path.home() / ".tcpchat"
    return base / "tcpchat.toml"


def _write_default_config(config_path: str) -> None:
    cfg_dir = Path(config_path).parent
    cfg_dir.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(cfg_dir, 0o700)
    except OSError:
        pass

    content = f"""# tcpchat configuration (TOML)
#
# Command-line flags override values here. The PORT environment variable
# overrides `port` but not --port.

[server]

# Address and port to listen on.
host = "0.0.0.0"
port = {DEFAULT_PORT}

# Disconnect a client after this many milliseconds without an accepted
# command. `idleTimeoutMs` is accepted as an alias.
idle_timeout_ms = {DEFAULT_IDLE_TIMEOUT_MS}

# Limits.
#
# max_line_bytes: close a connection whose unterminated line grows past this
# many bytes (0 disables the check).
# max_pending_writes: per-connection queue of unsent reply lines.
max_line_bytes = 65536
max_pending_writes = 1024

# A closing connection is shut down hard if the client has not read the
# remaining replies and closed its side within this many seconds.
close_timeout_s = 1.0

# Seconds to wait for connections to close on shutdown.
shutdown_grace_s = 2.0

[logging]

level = "INFO"

# Log to stderr (systemd/journald friendly).
console = true

# Optional file path for logs (leave empty to disable).
file = ""

format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""

# Per-component levels. Loggers: hub, session, commands, idle, conn.
# [logging.levels]
# conn = "DEBUG"
"""

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(content)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tcpchat", description="Run a line-based TCP chat server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (optional)",
    )
    p.add_argument(
        "--init-config",
        action="store_true",
        help="Write a default config file to --config and exit",
    )

    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument(
        "--port", type=int, default=None, help=f"Listen port (default: {DEFAULT_PORT})"
    )
    p.add_argument(
        "--idle-timeout-ms",
        type=int,
        default=None,
        help=f"Idle disconnect timeout in milliseconds (default: {DEFAULT_IDLE_TIMEOUT_MS})",
    )
    p.add_argument(
        "--max-line-bytes",
        type=int,
        default=None,
        help="Close connections sending longer unterminated lines (0 disables)",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace, environ=None) -> ChatRuntimeConfig:
    config_path = str(args.config) if args.config else None

    cfg = ChatRuntimeConfig(config_path=config_path)
    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    cfg = apply_environment(cfg, environ)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.idle_timeout_ms is not None:
        cfg = replace(cfg, idle_timeout_ms=int(args.idle_timeout_ms))
    if args.max_line_bytes is not None:
        cfg = replace(cfg, max_line_bytes=int(args.max_line_bytes))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if args.init_config:
        config_path = str(args.config)
        if os.path.exists(config_path):
            print(f"Config already exists: {config_path}", file=sys.stderr)
            raise SystemExit(1)
        _write_default_config(config_path)
        print(f"Created default config: {config_path}", file=sys.stderr)
        raise SystemExit(0)

    try:
        cfg = build_config(args)
        configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)
    except (OSError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2) from None

    try:
        svc = ChatService(cfg)
        svc.start()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2) from None
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            print(
                f"Port {cfg.port} is already in use. Please choose a different port.",
                file=sys.stderr,
            )
        else:
            print(f"Server error: {e}", file=sys.stderr)
        raise SystemExit(1) from None

    svc.run_forever()


if __name__ == "__main__":
    main()
