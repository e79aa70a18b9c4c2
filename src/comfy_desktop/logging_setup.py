"""
Logging setup for the desktop process.

Writes a rotating log file under the user data directory, strips terminal
escape sequences from everything that reaches the file, and installs global
exception hooks so uncaught errors are recorded.
"""

import logging
import os
import re
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOGGER_NAME = "comfy_desktop"
LOG_FILE_NAME = "main.log"
LOG_LEVEL_ENV_VAR = "LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_ANSI_RE = re.compile(r"\x1b\[[\d;?]*[A-Za-z]|\x1b\][^\x07]*\x07")


class StripAnsiFilter(logging.Filter):
    """Remove ANSI escape sequences from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = _ANSI_RE.sub("", message)
        record.args = None
        return True


def resolve_log_level(default: int = logging.INFO) -> int:
    """Read the log level from the LOG_LEVEL environment variable."""
    name = os.environ.get(LOG_LEVEL_ENV_VAR, "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def install_logging(log_dir: Optional[Path] = None, console: bool = True) -> logging.Logger:
    """
    Install rotating file logging and global exception hooks.

    Args:
        log_dir: Directory for main.log. Defaults to ./logs.
        console: Also log to stderr.

    Returns:
        The package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_log_level())

    formatter = logging.Formatter(LOG_FORMAT)
    log_dir = Path(log_dir) if log_dir else Path.cwd() / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
            fh = RotatingFileHandler(
                str(log_dir / LOG_FILE_NAME), maxBytes=2_000_000, backupCount=3, encoding="utf-8"
            )
            fh.setFormatter(formatter)
            fh.addFilter(StripAnsiFilter())
            logger.addHandler(fh)
    except OSError as e:
        # No writable log dir; stderr still works
        print(f"[comfy-desktop] Could not open log file in {log_dir}: {e}", file=sys.stderr)

    if console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        sh = logging.StreamHandler()
        sh.setFormatter(formatter)
        logger.addHandler(sh)

    def _excepthook(exc_type, exc, tb):
        logger.error("Uncaught exception", exc_info=(exc_type, exc, tb))

    sys.excepthook = _excepthook

    def _thread_excepthook(args):
        logger.error(
            f"Thread exception: {getattr(args.thread, 'name', 'unknown')}",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )

    threading.excepthook = _thread_excepthook
    return logger
