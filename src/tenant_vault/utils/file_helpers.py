"""Shared file utilities for tenant-vault.

Provides common utilities used by config, state and backups:
- get_app_dir: OS-appropriate application directory
- set_secure_permissions: Secure file/directory permissions
- require_file_exists: Helpful FileNotFoundError
- load_validated_json: JSON + Pydantic validation with readable errors
- write_json_atomic: Temp file + rename JSON writer
"""

from __future__ import annotations

__all__ = [
    "get_app_dir",
    "load_validated_json",
    "require_file_exists",
    "set_secure_permissions",
    "write_json_atomic",
]

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Any, TypeVar

import click
from pydantic import BaseModel, ValidationError

from tenant_vault.constants import APP_NAME

T = TypeVar("T", bound=BaseModel)


def get_app_dir() -> Path:
    """Get the OS-appropriate application directory.

    Uses click.get_app_dir() which returns:
    - macOS: ~/Library/Application Support/tenant-vault
    - Linux: ~/.config/tenant-vault (XDG compliant)
    - Windows: C:\\Users\\<user>\\AppData\\Roaming\\tenant-vault

    Returns:
        Path to the application directory.
    """
    return Path(click.get_app_dir(APP_NAME))


def set_secure_permissions(path: Path, *, is_directory: bool = False) -> None:
    """Set owner-only permissions on a file (0o600) or directory (0o700).

    Does nothing on Windows. Silently ignores permission errors
    (some systems don't allow permission changes).

    Args:
        path: Path to file or directory.
        is_directory: If True, use directory permissions (0o700).
    """
    if sys.platform == "win32":
        return

    try:
        mode = 0o700 if is_directory else 0o600
        path.chmod(mode)
    except OSError:
        pass  # Permission changes might fail on some systems


def require_file_exists(file_path: Path, file_type: str = "file") -> None:
    """Raise FileNotFoundError with helpful message if file doesn't exist.

    Args:
        file_path: Path to check.
        file_type: Description for error message (e.g., "configuration").

    Raises:
        FileNotFoundError: If file doesn't exist.
    """
    if file_path.exists():
        return
    raise FileNotFoundError(f"{file_type.capitalize()} file not found at {file_path}.")


def load_validated_json(
    file_path: Path,
    model_class: type[T],
    file_type: str = "file",
    recovery_hint: str | None = None,
    encoding: str | None = "utf-8",
) -> T:
    """Load JSON file and validate against Pydantic model.

    Combines file reading, JSON parsing, and Pydantic validation with
    consistent error messages.

    Args:
        file_path: Path to JSON file.
        model_class: Pydantic model class to validate against.
        file_type: Description for error messages (e.g., "config").
        recovery_hint: Optional hint appended to validation errors.
        encoding: File encoding.

    Returns:
        Validated Pydantic model instance.

    Raises:
        ValueError: If JSON is invalid or validation fails.
    """
    try:
        with open(file_path, "r", encoding=encoding) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_type} file {file_path}: {e}") from e
    except OSError as e:
        raise ValueError(f"Could not read {file_type} file {file_path}: {e}") from e

    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc_parts = error["loc"]
            loc = ".".join(str(x) for x in loc_parts)
            msg = error["msg"]

            # For trust domain errors, name the issuer to help identify the entry
            context = ""
            if len(loc_parts) >= 2 and loc_parts[0] == "trust_domains" and isinstance(loc_parts[1], int):
                index = loc_parts[1]
                entries = data.get("trust_domains", []) if isinstance(data, dict) else []
                if 0 <= index < len(entries) and isinstance(entries[index], dict):
                    issuer = entries[index].get("issuer")
                    context = f" (issuer: {issuer})" if issuer else f" (trust domain #{index + 1})"

            errors.append(f"  - {loc}{context}: {msg}")

        hint = f"\n\n{recovery_hint}" if recovery_hint else ""
        raise ValueError(
            f"Invalid {file_type} configuration in {file_path}:\n" + "\n".join(errors) + hint
        ) from e


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a file atomically with owner-only permissions.

    Writes to a temp file in the same directory, then renames over the
    target, so readers never observe a partially written file.

    Args:
        path: Destination file.
        data: JSON-serializable data.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(path.parent, is_directory=True)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}_", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
