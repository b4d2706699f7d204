"""
utils/logger.py
────────────────────────────────────────────────────────
Central logging configuration.

• Configures the root logger exactly once.
• Writes to the console and, unless LOG_TO_FILE is off, to the rotating
  file logs/bot.log.
• The level comes from settings.LOG_LEVEL (INFO by default).
• Exports `get_logger(name)` for named loggers in other modules.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.config import settings

LOG_DIR = Path(__file__).resolve().parents[1] / "logs"

LOG_FMT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FMT = "%Y-%m-%d %H:%M:%S"
LOG_LEVEL = getattr(logging, settings.LOG_LEVEL, logging.INFO)
_ROOT_LOGGER_INITIALIZED = False

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "google.auth")


def _init_root_logger() -> None:
    """Configure the root logger once."""
    global _ROOT_LOGGER_INITIALIZED
    if _ROOT_LOGGER_INITIALIZED:
        return

    root = logging.getLogger()
    if not root.handlers:
        root.setLevel(LOG_LEVEL)

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(logging.Formatter(LOG_FMT, DATE_FMT))
        root.addHandler(console)

        if settings.LOG_TO_FILE:
            LOG_DIR.mkdir(exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_DIR / "bot.log",
                maxBytes=2_000_000,       # ~2 MB
                backupCount=3,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter(LOG_FMT, DATE_FMT))
            root.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _ROOT_LOGGER_INITIALIZED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a named logger (or root when name is omitted).
    Usage:
        logger = get_logger(__name__)
        logger.info("Hello!")
    """
    _init_root_logger()
    return logging.getLogger(name or "root")


__all__ = ["get_logger"]
