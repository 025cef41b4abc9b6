import logging

import pytest

from tcpchat.config import ChatRuntimeConfig, apply_config_data
from tcpchat.logging_config import CHAT_LOGGERS, configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger("tcpchat")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    handlers, level, propagate = saved
    for h in handlers:
        logger.addHandler(h)
    logger.setLevel(level)
    logger.propagate = propagate
    for short in CHAT_LOGGERS:
        logging.getLogger(f"tcpchat.{short}").setLevel(logging.NOTSET)


def test_handlers_go_on_package_logger_not_root() -> None:
    root_before = list(logging.getLogger().handlers)
    logger = configure_logging(ChatRuntimeConfig(log_level="warning"))

    assert logger.name == "tcpchat"
    assert logger.level == logging.WARNING
    assert not logger.propagate
    assert len(logger.handlers) == 1
    assert logging.getLogger().handlers == root_before


def test_component_levels_from_config_file() -> None:
    cfg = apply_config_data(
        ChatRuntimeConfig(),
        {"logging": {"level": "INFO", "levels": {"conn": "DEBUG", "tcpchat.idle": "ERROR"}}},
    )
    configure_logging(cfg)

    assert logging.getLogger("tcpchat.conn").getEffectiveLevel() == logging.DEBUG
    assert logging.getLogger("tcpchat.idle").getEffectiveLevel() == logging.ERROR
    assert logging.getLogger("tcpchat.hub").getEffectiveLevel() == logging.INFO
    assert logging.getLogger("tcpchat.session").getEffectiveLevel() == logging.INFO


def test_reconfiguring_replaces_handlers_and_levels(tmp_path) -> None:
    log_file = tmp_path / "logs" / "chat.log"
    configure_logging(ChatRuntimeConfig(log_levels={"conn": "DEBUG"}))
    logger = configure_logging(ChatRuntimeConfig(log_console=False), override_file=str(log_file))

    assert [type(h) for h in logger.handlers] == [logging.FileHandler]
    assert logging.getLogger("tcpchat.conn").level == logging.NOTSET

    logging.getLogger("tcpchat.hub").info("hello file")
    logger.handlers[0].flush()
    assert "tcpchat.hub" in log_file.read_text(encoding="utf-8")


def test_override_level_wins_over_config() -> None:
    logger = configure_logging(ChatRuntimeConfig(log_level="ERROR"), override_level="DEBUG")
    assert logger.level == logging.DEBUG


@pytest.mark.parametrize(
    "cfg",
    [
        ChatRuntimeConfig(log_level="LOUD"),
        ChatRuntimeConfig(log_level="10"),
        ChatRuntimeConfig(log_levels={"nosuch": "DEBUG"}),
        ChatRuntimeConfig(log_levels={"conn": "NOTSET"}),
    ],
)
def test_unknown_levels_and_loggers_are_rejected(cfg) -> None:
    with pytest.raises(ValueError):
        configure_logging(cfg)
