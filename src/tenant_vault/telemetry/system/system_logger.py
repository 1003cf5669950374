"""System logger for operational events.

Singleton logger for everything that is not part of the audit trail
(key refresh failures, connector retries, state recovery on startup).

Logging strategy:
- Console (stderr): ALL operational messages (INFO, WARNING, ERROR, CRITICAL)
- File (system.jsonl): Only issues (WARNING, ERROR, CRITICAL)

The file handler is configured separately via configure_system_logger_file()
once the log directory from config is available.
"""

from __future__ import annotations

__all__ = [
    "ConsoleFormatter",
    "configure_system_logger_file",
    "get_system_log_path",
    "get_system_logger",
    "set_console_level",
]

import logging
import sys
from pathlib import Path

from tenant_vault.constants import APP_NAME
from tenant_vault.utils.file_helpers import set_secure_permissions
from tenant_vault.utils.logging.iso_formatter import ISO8601Formatter


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output.

    Extracts 'message' or 'event' field from dict messages for cleaner stderr output.
    """

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        return f"{record.levelname}: {record.getMessage()}"


# Module-level singleton logger
_system_logger: logging.Logger | None = None
_file_handler: logging.FileHandler | None = None
_stderr_handler: logging.StreamHandler | None = None


def get_system_logger() -> logging.Logger:
    """Get the singleton system logger instance.

    Creates the logger on first call with a stderr handler only. The file
    handler is added later via configure_system_logger_file().

    Returns:
        logging.Logger: Configured system logger instance.

    Example:
        >>> logger = get_system_logger()
        >>> logger.warning({"event": "revocation_retry_scheduled", "message": "..."})
    """
    global _system_logger, _stderr_handler

    if _system_logger is not None:
        return _system_logger

    _system_logger = logging.getLogger(f"{APP_NAME}.system")
    _system_logger.setLevel(logging.INFO)
    _system_logger.propagate = False

    for handler in _system_logger.handlers:
        handler.close()
    _system_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.INFO)
    stderr_handler.setFormatter(ConsoleFormatter())
    _system_logger.addHandler(stderr_handler)
    _stderr_handler = stderr_handler

    return _system_logger


def get_system_log_path(log_dir: str | Path) -> Path:
    """Get <log_dir>/tenant-vault/system/system.jsonl."""
    return Path(log_dir).expanduser() / APP_NAME / "system" / "system.jsonl"


def configure_system_logger_file(log_path: Path) -> None:
    """Add the WARNING+ file handler to the system logger.

    Only the first call has an effect.

    Args:
        log_path: Path to the system log file (see get_system_log_path()).
    """
    global _file_handler

    if _file_handler is not None:
        return

    logger = get_system_logger()

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        return  # stderr still works
    set_secure_permissions(log_path.parent, is_directory=True)

    _file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    _file_handler.setLevel(logging.WARNING)
    _file_handler.setFormatter(ISO8601Formatter())
    logger.addHandler(_file_handler)


def set_console_level(level: str) -> None:
    """Set the stderr level of the system logger ("DEBUG" or "INFO")."""
    logger = get_system_logger()
    logger.setLevel(level)
    if _stderr_handler is not None:
        _stderr_handler.setLevel(level)
