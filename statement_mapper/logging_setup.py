"""
Logging for the mapping audit trail.

Detection scores, retries, fallbacks, cache hits and error aggregations
are all logged under the ``statement_mapper`` namespace.  Records from a
single mapping run carry a ``[SYMBOL]`` prefix (see ``symbol_logger``) so
that runs from concurrent threads can be told apart in one stream.

``FinancialDataMapper`` installs the handlers on first construction using
``MapperConfig.log_level``; embedding applications that configure logging
themselves can call ``configure_logging`` first or attach their own
handlers to ``ROOT_LOGGER_NAME``.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


ROOT_LOGGER_NAME = "statement_mapper"

_CONFIGURED = False

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Route the audit trail to stdout and, optionally, *log_file*.

    Only the first call in a process has any effect, so mappers sharing
    a process never stack duplicate handlers.  Records do not propagate
    to the root logger.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        return

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(_handler(logging.StreamHandler(sys.stdout), level))
    if log_file:
        root.addHandler(_handler(logging.FileHandler(log_file, encoding="utf-8"), level))

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``statement_mapper`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class SymbolLoggerAdapter(logging.LoggerAdapter):
    """Prefix every record with the ticker symbol being mapped.

    A single mapping run touches the detector, one or two mappers and the
    error handler; the prefix keeps interleaved runs from concurrent
    threads readable in a shared log.
    """

    def process(self, msg, kwargs):
        return f"[{self.extra['symbol']}] {msg}", kwargs


def symbol_logger(logger: logging.Logger, symbol: str) -> SymbolLoggerAdapter:
    """Wrap *logger* so that its messages carry ``[symbol]``."""
    return SymbolLoggerAdapter(logger, {"symbol": symbol or "UNKNOWN"})
