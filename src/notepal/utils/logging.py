"""Logging setup for the NotePal CLI.

Everything goes to ``notepal.log`` under the data directory's ``logs/``
folder. The console handler is optional because the chat REPL owns stdout.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

from .file_io import data_dir

__all__ = ["setup_logging", "get_logger", "get_log_path"]

LOG_DIR_ENV_VAR = "NOTEPAL_LOG_DIR"
LOG_FILE_NAME = "notepal.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# HTTP and SDK chatter drowns out turn-level records at DEBUG.
_CHATTY_LIBRARIES = ("asyncio", "httpx", "httpcore", "openai")

_active_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the rotating file handler (and optionally stderr) on the root logger.

    Repeated calls are no-ops returning the existing log path unless
    ``force`` is set.
    """

    global _active_log_path
    if _active_log_path is not None and not force:
        return _active_log_path

    folder = Path(log_dir or os.environ.get(LOG_DIR_ENV_VAR) or data_dir() / "logs").expanduser()
    folder.mkdir(parents=True, exist_ok=True)
    log_path = folder / LOG_FILE_NAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    library_level = max(level, logging.WARNING)
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    _active_log_path = log_path
    return log_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_log_path() -> Path | None:
    """Path of the active log file, or ``None`` before :func:`setup_logging` runs."""

    return _active_log_path
