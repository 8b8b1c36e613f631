"""Process-wide logging with syslog-style severity levels."""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from enum import IntEnum

__all__ = [
    "Level",
    "Logger",
    "ConsoleLogger",
    "set_logger",
    "log",
    "debug",
    "info",
    "notice",
    "warn",
    "err",
    "critical",
]


class Level(IntEnum):
    """Severity levels, numbered as syslog numbers them."""

    CRITICAL = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7


class Logger(ABC):
    """Receives every message logged at any level."""

    @abstractmethod
    def log(self, level: Level, value: str) -> None:
        """Record a message at the given level."""


class ConsoleLogger(Logger):
    """Writes each message as one line on standard error."""

    def log(self, level: Level, value: str) -> None:
        print(value, file=sys.stderr, flush=True)


_logger: Logger | None = None


def set_logger(logger: Logger | None) -> None:
    """Install the logger that receives messages, or None to discard them."""
    global _logger
    _logger = logger


def log(level: Level, value: str) -> None:
    """Pass a message to the installed logger, if there is one."""
    if _logger is not None:
        _logger.log(level, value)


def debug(message: str) -> None:
    log(Level.DEBUG, message)


def info(message: str) -> None:
    log(Level.INFO, message)


def notice(message: str) -> None:
    log(Level.NOTICE, message)


def warn(message: str) -> None:
    log(Level.WARNING, message)


def err(message: str) -> None:
    log(Level.ERROR, message)


def critical(message: str) -> None:
    log(Level.CRITICAL, message)