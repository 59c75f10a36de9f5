"""
Tests for logging setup.
"""
import logging
import logging.handlers
from unittest.mock import MagicMock

import pytest
import structlog

import cs230.logging as cs230_logging
from cs230.config import settings


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_announces_through_structlog(monkeypatch, restore_logging):
    fake = MagicMock()
    monkeypatch.setattr(cs230_logging, "logger", fake)

    cs230_logging.setup_logging("tester", level=logging.DEBUG)

    fake.info.assert_called_once_with(
        "logging_initialized", component="tester", log_to_file=False
    )
    assert logging.getLogger().level == logging.DEBUG


def test_file_handler_only_when_enabled(monkeypatch, tmp_path, restore_logging):
    monkeypatch.setattr(settings, "log_to_file", True)
    monkeypatch.setattr(settings, "log_dir", tmp_path / "logs")

    cs230_logging.setup_logging("tester")

    assert (tmp_path / "logs").is_dir()
    assert any(
        isinstance(h, logging.handlers.RotatingFileHandler) for h in logging.getLogger().handlers
    )
