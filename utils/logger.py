import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from platformdirs import user_log_dir

LOGGER_NAME = "playlist_remote"
DEFAULT_LOG_FILE = os.path.join(user_log_dir("playlist-remote"), "playlist-remote.log")

_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(message)s"

_console_handler: Optional[logging.Handler] = None
_file_handler: Optional[logging.Handler] = None

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(log_file: Optional[str] = None, level: str = "INFO", *, console: bool = True) -> str:
    """Configure root logging: rotating file always, stderr while the TUI is not running.

    Returns the log file path.
    """
    global _console_handler, _file_handler

    log_file = log_file or DEFAULT_LOG_FILE
    os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(root.handlers):
        root.removeHandler(handler)
    # Handlers from a previous call hold the old log file open.
    for handler in (_file_handler, _console_handler):
        if handler is not None:
            handler.close()

    _file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    _file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    root.addHandler(_file_handler)

    _console_handler = logging.StreamHandler(sys.stderr)
    _console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    if console:
        root.addHandler(_console_handler)

    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return log_file


def set_console_logging(enabled: bool) -> None:
    """Attach/detach the stderr handler (it would scribble over the fullscreen UI)."""
    if _console_handler is None:
        return
    root = logging.getLogger()
    if enabled and _console_handler not in root.handlers:
        root.addHandler(_console_handler)
    elif not enabled and _console_handler in root.handlers:
        root.removeHandler(_console_handler)


def log_debug(message: str) -> None:
    logger.debug(message)


def log_info(message: str) -> None:
    logger.info(message)


def log_success(message: str) -> None:
    logger.info(f"✅ {message}")


def log_warning(message: str) -> None:
    logger.warning(message)


def log_error(message: str) -> None:
    logger.error(message)
