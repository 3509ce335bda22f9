from __future__ import annotations

import logging
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path

_LOGGER = logging.getLogger("mechvibe.logging")
LOG_DIR_ENV = "MECHVIBE_LOG_DIR"
_LOG_FILE = "mechvibe.log"
_ROOT_LOGGER = "mechvibe"
_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def get_log_dir() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "mechvibe" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def configure_logging(level: int = logging.WARNING) -> logging.Logger:
    """Attach a single stderr handler to the package logger."""

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(level)
    if not any(getattr(handler, "_mechvibe", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT))
        setattr(handler, "_mechvibe", True)
        logger.addHandler(handler)
    return logger


def log_exception(context: str, exc: BaseException) -> Path | None:
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        path = get_log_path()
        timestamp = datetime.now().isoformat()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{timestamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
        return path
    except Exception as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
