from __future__ import annotations

import logging
import os
import sys
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

_LOGGER = logging.getLogger("bowsense.logging")
_ROOT_LOGGER = "bowsense"
_LOG_DIR_ENV = "BOWSENSE_LOG_DIR"
_LOG_LEVEL_ENV = "BOWSENSE_LOG_LEVEL"
_DEBUG_ENV = "BOWSENSE_DEBUG"
_LOG_FILE = "bowsense.log"
_MAX_LOG_BYTES = 2_000_000
_LOG_BACKUPS = 3
_logging_configured = False

_CONSOLE_FORMAT = "%(level_prefix)s %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_LEVEL_PREFIXES = {
    logging.DEBUG: "🐛",
    logging.INFO: "🎻",
    logging.WARNING: "⚠️",
    logging.ERROR: "❌",
    logging.CRITICAL: "💥",
}


class _ConsoleEmojiFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.level_prefix = _LEVEL_PREFIXES.get(record.levelno, "")
        return super().format(record)


def debug_enabled() -> bool:
    """True when ``BOWSENSE_DEBUG`` asks for tracebacks on recovered errors."""
    return bool(os.environ.get(_DEBUG_ENV))


def get_log_dir() -> Path:
    configured = os.environ.get(_LOG_DIR_ENV)
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "bowsense" / "logs"


def get_log_path() -> Path:
    return get_log_dir() / _LOG_FILE


def _console_level() -> int:
    configured = os.environ.get(_LOG_LEVEL_ENV, "").strip().upper()
    if configured:
        level = logging.getLevelName(configured)
        if isinstance(level, int):
            return level
        _LOGGER.warning("Ignoring unknown %s=%s", _LOG_LEVEL_ENV, configured)
    return logging.DEBUG if debug_enabled() else logging.INFO


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(stream=sys.__stderr__)
    handler.setLevel(_console_level())
    handler.setFormatter(_ConsoleEmojiFormatter(_CONSOLE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    # A live session logs at sample rate under DEBUG; cap the file.
    handler = RotatingFileHandler(
        path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
    return handler


def configure_logging(*, force: bool = False) -> None:
    """Attach console and file handlers to the ``bowsense`` logger once.

    The console handler is skipped when the host application already
    configured the root logger; records still propagate to it.
    """

    global _logging_configured
    if _logging_configured and not force:
        return

    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(logging.DEBUG)
    if force:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    if force or not logging.getLogger().handlers:
        logger.addHandler(_console_handler())

    try:
        logger.addHandler(_file_handler(get_log_path()))
    except OSError as exc:
        _LOGGER.warning("Failed to configure file logging: %s", exc, exc_info=debug_enabled())

    logger.propagate = True
    _logging_configured = True


def log_exception(context: str, exc: BaseException) -> Path | None:
    """Append ``exc`` with its traceback to the log file; returns the file path."""

    path = get_log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().isoformat(timespec="seconds")
        with path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{stamp}] {context} failed: {type(exc).__name__}: {exc}\n")
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=handle)
            handle.write("\n")
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file: %s", log_exc, exc_info=True)
        return None
    return path
