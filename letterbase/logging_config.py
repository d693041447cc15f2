"""Logging setup shared by the command line trigger and the scheduler."""
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

from letterbase import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE_NAME = "letterbase.log"
# googleapiclient logs every discovery lookup at INFO.
_NOISY_LOGGERS = ("googleapiclient.discovery", "googleapiclient.discovery_cache")

_LOG_PATH: Optional[Path] = None


def _level_from_env(default: int) -> int:
    name = os.environ.get("LETTERBASE_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else default


def _has_handler(root: logging.Logger, kind: type, target: object) -> bool:
    for handler in root.handlers:
        if type(handler) is not kind:
            continue
        if isinstance(handler, logging.FileHandler):
            if handler.baseFilename == target:
                return True
        elif getattr(handler, "stream", None) is target:
            return True
    return False


def configure_logging(level: int = logging.INFO, *, console: bool = False) -> Path:
    """Send log records to ``<data>/logs/letterbase.log``.

    Parameters
    ----------
    level:
        Minimum level of the root logger; ``LETTERBASE_LOG_LEVEL`` overrides
        it.  ``logging.INFO`` records one line per sync run and per conflict.
    console:
        Also echo records to ``stderr``.  The command line trigger enables
        this.

    Returns
    -------
    pathlib.Path
        The path to the log file.
    """

    global _LOG_PATH

    level = _level_from_env(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level if not root_logger.handlers else min(root_logger.level, level))
    formatter = logging.Formatter(LOG_FORMAT)

    log_path = app_paths.logs_path(LOG_FILE_NAME)
    if not _has_handler(root_logger, logging.FileHandler, str(log_path)):
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not _has_handler(root_logger, logging.StreamHandler, sys.stderr):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if _LOG_PATH is None:
        root_logger.debug("Logging configured. Writing to %s", log_path)
    _LOG_PATH = log_path
    return log_path


__all__ = ["LOG_FILE_NAME", "LOG_FORMAT", "configure_logging"]
