"""Logging setup for unifimon.

curses owns the terminal while the dashboard runs, so nothing may be written
to stdout/stderr; records go to a debug log file instead.
"""

from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LOG_PATH = Path.home() / ".local" / "share" / "unifimon" / "debug.log"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the ``unifimon`` namespace."""
    return logging.getLogger(f"unifimon.{name}")


def _replace_handlers(logger: logging.Logger, handler: logging.Handler) -> None:
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.propagate = False


def setup_file_logging(path: Path | None = None, level: str = "INFO") -> Path:
    """Route every ``unifimon.*`` record to *path* (truncated on start).

    Returns the path actually used.
    """
    log_path = path or DEFAULT_LOG_PATH
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("unifimon")
    _replace_handlers(root, handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every request at INFO; keep those out unless debugging.
    # Its records go to the same file, never to the terminal.
    httpx_log = logging.getLogger("httpx")
    _replace_handlers(httpx_log, handler)
    httpx_log.setLevel(logging.DEBUG if root.level <= logging.DEBUG else logging.WARNING)
    return log_path
