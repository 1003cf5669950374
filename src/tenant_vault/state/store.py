"""Durable state document for registries, sessions and leases.

Everything that must survive a restart lives in one JSON document:
domains, identity bindings, sessions (validity windows), leases
(Active and Revoking) and pending revocation jobs.

The document is written atomically after each change (temp file + rename),
so a crash mid-write leaves the previous version intact. A lease persisted
in Revoking state resumes retrying after restart rather than resetting.
"""

from __future__ import annotations

__all__ = [
    "PersistedState",
    "StateStore",
    "default_state_path",
]

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from tenant_vault.broker.lease import Lease, RevocationJob
from tenant_vault.constants import APP_NAME, STATE_FILE_NAME, STATE_SCHEMA_VERSION
from tenant_vault.exceptions import ConfigurationError
from tenant_vault.pips.auth.session import Session
from tenant_vault.state.models import Domain, IdentityBinding
from tenant_vault.utils.file_helpers import get_app_dir, write_json_atomic

_logger = logging.getLogger(f"{APP_NAME}.state.store")

_SECTIONS = ("domains", "bindings", "sessions", "leases", "revocations")


def default_state_path() -> Path:
    """Get the default state file location inside the app directory."""
    return get_app_dir() / STATE_FILE_NAME


class PersistedState(BaseModel):
    """Schema of the state document.

    Attributes:
        version: Schema version for migrations.
        updated_at: When the document was last written.
        domains: Registered domains.
        bindings: Registered identity bindings.
        sessions: Issued sessions (including revoked ones until they expire).
        leases: Active and Revoking leases. Gone leases are removed.
        revocations: Pending revocation jobs.
    """

    version: int = STATE_SCHEMA_VERSION
    updated_at: datetime | None = None
    domains: list[Domain] = Field(default_factory=list)
    bindings: list[IdentityBinding] = Field(default_factory=list)
    sessions: list[Session] = Field(default_factory=list)
    leases: list[Lease] = Field(default_factory=list)
    revocations: list[RevocationJob] = Field(default_factory=list)


class StateStore:
    """Loads and atomically persists the state document.

    Thread-safe via internal lock. Each component owns one or more sections
    and writes them back with update(); the other sections are preserved.

    Pass path=None for an in-memory store (nothing touches disk).
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: Location of the state JSON file, or None for memory only.
        """
        self._path = path
        self._lock = threading.Lock()
        self._state: PersistedState | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def is_durable(self) -> bool:
        return self._path is not None

    def load(self) -> PersistedState:
        """Load the state document, reading the file on first call.

        Returns:
            PersistedState (empty if the file does not exist yet).

        Raises:
            ConfigurationError: If the file exists but cannot be parsed.
        """
        with self._lock:
            if self._state is None:
                self._state = self._read()
            return self._state

    def update(self, **sections: Any) -> PersistedState:
        """Replace one or more sections and persist the document.

        Args:
            **sections: Section name -> new list (domains, bindings, sessions,
                leases, revocations).

        Returns:
            The new state document.

        Raises:
            ValueError: If an unknown section name is given.
        """
        unknown = set(sections) - set(_SECTIONS)
        if unknown:
            raise ValueError(f"Unknown state sections: {sorted(unknown)}")

        with self._lock:
            if self._state is None:
                self._state = self._read()
            new_state = self._state.model_copy(
                update={**{k: list(v) for k, v in sections.items()}, "updated_at": datetime.now(timezone.utc)}
            )
            if self._path is not None:
                self._write(new_state)
            self._state = new_state
            return new_state

    def _read(self) -> PersistedState:
        if self._path is None or not self._path.exists():
            return PersistedState()

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in state file {self._path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Could not read state file {self._path}: {e}") from e

        try:
            state = PersistedState.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid state file {self._path}: {e}") from e

        if state.version != STATE_SCHEMA_VERSION:
            raise ConfigurationError(
                f"Unsupported state schema version {state.version} in {self._path} "
                f"(expected {STATE_SCHEMA_VERSION})"
            )

        _logger.info(
            {
                "event": "state_loaded",
                "message": f"Loaded state from {self._path}",
                "domains": len(state.domains),
                "bindings": len(state.bindings),
                "sessions": len(state.sessions),
                "leases": len(state.leases),
                "revocations": len(state.revocations),
            }
        )
        return state

    def _write(self, state: PersistedState) -> None:
        """Persist state atomically (temp file + rename).

        State file won't be corrupted even if process crashes mid-write.
        """
        if self._path is None:
            return
        write_json_atomic(self._path, state.model_dump(mode="json"))
