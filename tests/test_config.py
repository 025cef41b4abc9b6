import argparse

import pytest

from tcpchat.cli import _build_arg_parser, _write_default_config, build_config, default_config_path
from tcpchat.config import ChatRuntimeConfig, apply_config_data, apply_environment, load_toml
from tcpchat.constants import DEFAULT_IDLE_TIMEOUT_MS, DEFAULT_PORT
from tcpchat.service import ChatService


def test_defaults() -> None:
    cfg = ChatRuntimeConfig()
    assert cfg.port == DEFAULT_PORT == 4000
    assert cfg.idle_timeout_ms == DEFAULT_IDLE_TIMEOUT_MS == 60000


def test_apply_tables_and_alias() -> None:
    data = {
        "server": {"port": 5555, "idleTimeoutMs": 1500, "bogus": 1},
        "logging": {"level": "DEBUG", "file": ""},
        "config_path": "/elsewhere",
    }
    cfg = apply_config_data(ChatRuntimeConfig(config_path="/here"), data)
    assert cfg.port == 5555
    assert cfg.idle_timeout_ms == 1500
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.config_path == "/here"


def test_environment_port() -> None:
    cfg = apply_environment(ChatRuntimeConfig(), {"PORT": "4321"})
    assert cfg.port == 4321
    assert apply_environment(cfg, {}).port == 4321
    with pytest.raises(ValueError):
        apply_environment(cfg, {"PORT": "nope"})


def test_default_config_file_round_trips(tmp_path) -> None:
    path = tmp_path / "sub" / "tcpchat.toml"
    _write_default_config(str(path))
    cfg = apply_config_data(ChatRuntimeConfig(), load_toml(str(path)))
    assert cfg == ChatRuntimeConfig()


def test_cli_flags_override_file_and_env(tmp_path) -> None:
    path = tmp_path / "tcpchat.toml"
    path.write_text('[server]\nport = 5000\nidle_timeout_ms = 2000\n', encoding="utf-8")

    args = _build_arg_parser().parse_args(["--config", str(path), "--port", "6000"])
    cfg = build_config(args, environ={"PORT": "7000"})
    assert cfg.port == 6000
    assert cfg.idle_timeout_ms == 2000

    args = _build_arg_parser().parse_args(["--config", str(path)])
    assert build_config(args, environ={"PORT": "7000"}).port == 7000


def test_missing_config_file_is_fine(tmp_path) -> None:
    args = argparse.Namespace(
        config=str(tmp_path / "missing.toml"),
        host=None,
        port=None,
        idle_timeout_ms=None,
        max_line_bytes=None,
        log_level=None,
        log_file=None,
    )
    assert build_config(args, environ={}).port == DEFAULT_PORT


def test_service_rejects_bad_idle_timeout() -> None:
    with pytest.raises(ValueError):
        ChatService(ChatRuntimeConfig(idle_timeout_ms=0))


def test_default_config_path_honours_tcpchat_home(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("TCPCHAT_HOME", str(tmp_path))
    assert default_config_path() == tmp_path / "tcpchat.toml"
    args = _build_arg_parser().parse_args([])
    assert args.config == str(tmp_path / "tcpchat.toml")


def test_logging_levels_must_be_a_table() -> None:
    with pytest.raises(ValueError):
        apply_config_data(ChatRuntimeConfig(), {"logging": {"levels": "DEBUG"}})
