"""
Unit tests for the logging helpers.
"""

from __future__ import annotations

import logging

import pytest

from statement_mapper import logging_setup
from statement_mapper.logging_setup import (
    ROOT_LOGGER_NAME,
    configure_logging,
    get_logger,
    symbol_logger,
)


@pytest.fixture
def fresh_root(monkeypatch: pytest.MonkeyPatch):
    root = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(root.handlers), root.level, root.propagate)
    monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
    root.handlers = []
    yield root
    root.handlers, level, root.propagate = saved
    root.setLevel(level)


# ======================================================================
# Loggers
# ======================================================================

class TestLoggers:
    def test_child_of_package_namespace(self) -> None:
        assert get_logger("cache").name == "statement_mapper.cache"

    def test_symbol_prefix(self) -> None:
        adapter = symbol_logger(get_logger("orchestrator"), "TCS")
        msg, _ = adapter.process("Detected banking", {})
        assert msg == "[TCS] Detected banking"

    def test_missing_symbol(self) -> None:
        adapter = symbol_logger(get_logger("orchestrator"), None)
        assert adapter.process("x", {})[0] == "[UNKNOWN] x"


# ======================================================================
# configure_logging()
# ======================================================================

class TestConfigureLogging:
    def test_first_call_wins(self, fresh_root: logging.Logger) -> None:
        configure_logging(level=logging.WARNING)
        configure_logging(level=logging.DEBUG)
        assert len(fresh_root.handlers) == 1
        assert fresh_root.level == logging.WARNING
        assert not fresh_root.propagate

    def test_log_file(self, fresh_root: logging.Logger, tmp_path) -> None:
        path = tmp_path / "mapper.log"
        configure_logging(log_file=str(path))
        symbol_logger(get_logger("cache"), "INFY").info("stored")
        for handler in fresh_root.handlers:
            handler.flush()
        assert len(fresh_root.handlers) == 2
        assert "[INFY] stored" in path.read_text(encoding="utf-8")
        fresh_root.handlers[1].close()
