"""System operational logging (stderr + system.jsonl)."""

from tenant_vault.telemetry.system.system_logger import (
    configure_system_logger_file,
    get_system_log_path,
    get_system_logger,
    set_console_level,
)

__all__ = [
    "configure_system_logger_file",
    "get_system_log_path",
    "get_system_logger",
    "set_console_level",
]
