"""Logger setup utilities for creating JSONL loggers.

- setup_jsonl_logger: file logger writing JSONL with ISO 8601 timestamps
- setup_memory_logger: logger with no file, for in-memory deployments and tests
"""

from __future__ import annotations

__all__ = [
    "setup_jsonl_logger",
    "setup_memory_logger",
]

import logging
from pathlib import Path

from tenant_vault.utils.file_helpers import set_secure_permissions
from tenant_vault.utils.logging.iso_formatter import ISO8601Formatter


def _reset_logger(logger_name: str, log_level: int) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)
    logger.propagate = False

    # Reconfiguring replaces the previous file, never adds a second one
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    return logger


def setup_jsonl_logger(
    logger_name: str,
    log_file: Path,
    log_level: int = logging.INFO,
) -> logging.Logger:
    """Set up a logger that writes JSONL with ISO 8601 timestamps.

    The directory is created 0o700 and the file 0o600, since audit files
    hold hashed identities and lease ids.

    Args:
        logger_name: Name for the logger (e.g., "tenant-vault.audit.auth").
        log_file: Path to the log file.
        log_level: Logging level (default: INFO).

    Returns:
        logging.Logger: Configured logger instance.

    Raises:
        OSError: If the log directory cannot be created.
    """
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Cannot create log directory {log_file.parent}: {e}") from e
    set_secure_permissions(log_file.parent, is_directory=True)

    logger = _reset_logger(logger_name, log_level)
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(log_level)
    handler.setFormatter(ISO8601Formatter())
    logger.addHandler(handler)

    set_secure_permissions(log_file)
    return logger


def setup_memory_logger(logger_name: str, log_level: int = logging.INFO) -> logging.Logger:
    """Set up a logger that discards records unless a handler is attached later.

    Used when no log directory is configured. Tests attach caplog or their
    own handler to observe events.
    """
    logger = _reset_logger(logger_name, log_level)
    logger.addHandler(logging.NullHandler())
    return logger
