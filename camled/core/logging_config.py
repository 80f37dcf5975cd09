"""Logging setup for the camled demo process.

Messages already carry a ``[Component]`` prefix from ``StructuredLogger``,
so the console format stays short. The optional log file adds the logger
name and thread, which matters because GPIO writes, pipe reads and process
scans run in worker threads.

Only handlers installed here are ever removed; handlers added by an
embedding UI or by pytest's ``caplog`` stay attached to the root logger.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Union

if TYPE_CHECKING:
    from camled.config import LoggingSettings

CONSOLE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-7s %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(threadName)s] %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 3

# Chatty at DEBUG: asyncio reports slow callbacks, PIL every decoder plugin.
NOISY_LOGGERS = ("asyncio", "PIL")

_installed: List[logging.Handler] = []


def coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        name = level.strip().upper()
        value = logging.getLevelName(name)
        if not isinstance(value, int):
            raise ValueError(f"Unknown log level '{level}'")
        return value
    return int(level)


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, CONSOLE_DATEFMT))
    return handler


def _file_handler(path: Union[str, Path]) -> logging.Handler:
    log_path = Path(path).expanduser()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(FILE_FORMAT, FILE_DATEFMT))
    return handler


def reset_logging() -> None:
    """Detach and close every handler installed by :func:`configure_logging`."""
    root = logging.getLogger()
    while _installed:
        handler = _installed.pop()
        root.removeHandler(handler)
        with contextlib.suppress(OSError):
            handler.close()


def configure_logging(
    level: Union[int, str] = logging.INFO,
    *,
    force: bool = False,
    console: bool = True,
    log_file: Optional[Union[str, Path]] = None,
    noisy_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Install console and optional rotating-file handlers on the root logger.

    A second call only adjusts the level unless ``force`` is set, in which
    case the handlers from the previous call are replaced.
    """
    numeric_level = coerce_level(level)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    for name in noisy_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if _installed and not force:
        return
    reset_logging()

    if console:
        _installed.append(_console_handler())
    if log_file:
        _installed.append(_file_handler(log_file))
    for handler in _installed:
        root.addHandler(handler)

    logging.captureWarnings(True)


def configure_from_settings(settings: "LoggingSettings", *, force: bool = True) -> None:
    configure_logging(settings.level, force=force, log_file=settings.file)


__all__ = [
    "CONSOLE_FORMAT",
    "FILE_FORMAT",
    "coerce_level",
    "configure_from_settings",
    "configure_logging",
    "reset_logging",
]
