"""Tests for relay.logging_config."""

import logging
from pathlib import Path

import pytest

from relay.logging_config import setup_logging


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for h in root.handlers[:]:
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_file_and_console_handlers(tmp_path: Path) -> None:
    setup_logging(tmp_path, {"logging": {"file": "logs/relay.log", "level": "debug"}})
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    kinds = {type(h).__name__ for h in root.handlers}
    assert kinds == {"RotatingFileHandler", "StreamHandler"}

    logging.getLogger("relay.test").info("hello relay")
    for h in root.handlers:
        h.flush()
    assert "hello relay" in (tmp_path / "logs" / "relay.log").read_text(encoding="utf-8")


def test_console_only_when_no_file(tmp_path: Path) -> None:
    setup_logging(tmp_path, {"logging": {"file": None, "log_to_console": False}})
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert type(handlers[0]) is logging.StreamHandler
