"""Diagnostic log sinks injected into the state components."""

from __future__ import annotations

import logging
from typing import Callable

LogSink = Callable[[str, str], None]

_LEVEL_ALIASES = {"WARN": "warning", "FATAL": "critical"}


def logger_sink(logger: logging.Logger) -> LogSink:
    """Return a ``(level, message)`` sink that forwards to ``logger``."""

    def _sink(level: str, message: str) -> None:
        name = _LEVEL_ALIASES.get(level.upper(), level.lower())
        log_method = getattr(logger, name, None)
        if not callable(log_method):
            log_method = logger.info
        log_method(message)

    return _sink


__all__ = ["LogSink", "logger_sink"]
