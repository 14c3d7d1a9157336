"""Logging setup for the texture packer.

Standalone runs (no root handlers yet) get a console handler and, when asked,
a rotating log file on the root logger. When a host application has already
configured logging, only the ``terrain_packer`` hierarchy is adjusted.
"""

import logging
import logging.handlers
import os
import threading
from typing import Optional

PACKER_LOGGER = "terrain_packer"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s"

_ROTATE_BYTES = 10 * 1024 * 1024
_ROTATE_KEEP = 3
_lock = threading.Lock()

logger = logging.getLogger(PACKER_LOGGER)


def _resolve_level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    if isinstance(value, int):
        return value
    logger.warning("Invalid log level '%s', defaulting to INFO", level)
    return logging.INFO


def _open_log_file(path: str) -> logging.Handler:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_KEEP, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _has_log_file(target: logging.Logger, path: str) -> bool:
    wanted = os.path.abspath(path)
    return any(
        getattr(h, "baseFilename", None) == wanted for h in target.handlers
    )


def setup_logging(level: str = "INFO", log_file: Optional[str] = None,
                  force: bool = False) -> None:
    """Configure console (and optional rotating file) logging.

    ``force`` replaces any root handlers; otherwise an already-configured
    host keeps its handlers and the log file attaches to the packer logger.
    """
    numeric_level = _resolve_level(level)
    with _lock:
        root = logging.getLogger()
        if force or not root.handlers:
            handlers = [logging.StreamHandler()]
            if log_file:
                handlers.append(_open_log_file(log_file))
            logging.basicConfig(
                level=numeric_level, format=LOG_FORMAT, handlers=handlers, force=force,
            )
            return

        packer_logger = logging.getLogger(PACKER_LOGGER)
        packer_logger.setLevel(numeric_level)
        if log_file and not _has_log_file(packer_logger, log_file):
            packer_logger.addHandler(_open_log_file(log_file))
            logger.info("Logging to %s", os.path.abspath(log_file))
