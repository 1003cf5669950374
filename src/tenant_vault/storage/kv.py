"""Versioned key/value secret storage.

Each write to a path creates a new version. Versions have three states:

    live       readable
    deleted    soft-deleted: unreadable, data and metadata retained, can be undeleted
    destroyed  data removed irreversibly; metadata records that it existed

Reads default to the current (highest) version. This module performs no
authorization; the secret store enforcement point wraps it.
"""

from __future__ import annotations

__all__ = [
    "SecretMetadata",
    "SecretRecord",
    "VersionMetadata",
    "VersionedKVStore",
]

import copy
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from tenant_vault.exceptions import CheckAndSetError, SecretNotFoundError, SecretVersionDeletedError
from tenant_vault.pdp.matcher import normalize_path


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VersionMetadata:
    """Metadata of one version.

    Attributes:
        version: Version number, starting at 1.
        created_at: When the version was written.
        deleted_at: Soft-delete time, or None.
        destroyed: True once the data has been irreversibly removed.
    """

    version: int
    created_at: datetime
    deleted_at: datetime | None = None
    destroyed: bool = False

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None and not self.destroyed


@dataclass(frozen=True)
class SecretMetadata:
    """Metadata of a path across all its versions.

    Attributes:
        path: Normalized path.
        current_version: Highest version written.
        oldest_version: Lowest version still tracked.
        created_at: When version 1 was written.
        updated_at: When the latest version was written.
        versions: version -> VersionMetadata.
    """

    path: str
    current_version: int
    oldest_version: int
    created_at: datetime
    updated_at: datetime
    versions: dict[int, VersionMetadata] = field(default_factory=dict)


@dataclass(frozen=True)
class SecretRecord:
    """Data of one readable version.

    Attributes:
        path: Normalized path.
        version: Version number that was read.
        data: Secret key/value data (a copy).
        metadata: Metadata of that version.
    """

    path: str
    version: int
    data: dict[str, Any]
    metadata: VersionMetadata


@dataclass
class _Entry:
    versions: dict[int, VersionMetadata] = field(default_factory=dict)
    data: dict[int, dict[str, Any]] = field(default_factory=dict)
    current_version: int = 0


class VersionedKVStore:
    """In-memory versioned KV store.

    Thread-safe via internal lock.

    Usage:
        kv = VersionedKVStore()
        kv.write("secret/alpha/app-config", {"log_level": "info"})   # version 1
        kv.read("secret/alpha/app-config").data
        kv.delete("secret/alpha/app-config", [1])                     # soft
        kv.destroy("secret/alpha/app-config", [1])                    # irreversible
    """

    def __init__(self, *, max_versions: int = 0, clock: Callable[[], datetime] = _utcnow) -> None:
        """Initialize an empty store.

        Args:
            max_versions: Versions kept per path (oldest are pruned); 0 keeps all.
            clock: Source of the current UTC time.
        """
        self._max_versions = max_versions
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def exists(self, path: str) -> bool:
        """Check whether the path's current version is live."""
        path = normalize_path(path)
        with self._lock:
            entry = self._entries.get(path)
            if entry is None or entry.current_version == 0:
                return False
            meta = entry.versions.get(entry.current_version)
            return meta is not None and meta.is_live

    def write(self, path: str, data: dict[str, Any], *, cas: int | None = None) -> VersionMetadata:
        """Write a new version.

        Args:
            path: Secret path.
            data: Key/value data.
            cas: Check-and-set. 0 requires that the path has never been
                written; n requires the current version to be n.

        Returns:
            Metadata of the new version.

        Raises:
            CheckAndSetError: If cas does not match the current version.
        """
        path = normalize_path(path)
        with self._lock:
            entry = self._entries.get(path) or _Entry()
            if cas is not None and cas != entry.current_version:
                raise CheckAndSetError(path, cas, entry.current_version)
            self._entries[path] = entry

            version = entry.current_version + 1
            meta = VersionMetadata(version=version, created_at=self._clock())
            entry.versions[version] = meta
            entry.data[version] = copy.deepcopy(data)
            entry.current_version = version
            self._prune(entry)
            return meta

    def read(self, path: str, version: int | None = None) -> SecretRecord:
        """Read a version (default: current).

        Raises:
            SecretNotFoundError: If the path or version does not exist or the
                version was destroyed.
            SecretVersionDeletedError: If the version is soft-deleted.
        """
        path = normalize_path(path)
        with self._lock:
            entry = self._entries.get(path)
            if entry is None or entry.current_version == 0:
                raise SecretNotFoundError(path, version)

            wanted = entry.current_version if version is None else version
            meta = entry.versions.get(wanted)
            if meta is None or meta.destroyed:
                raise SecretNotFoundError(path, wanted)
            if meta.deleted_at is not None:
                raise SecretVersionDeletedError(path, wanted, meta.deleted_at)

            return SecretRecord(
                path=path,
                version=wanted,
                data=copy.deepcopy(entry.data[wanted]),
                metadata=meta,
            )

    def delete(self, path: str, versions: Iterable[int] | None = None) -> list[int]:
        """Soft-delete versions (default: current). Metadata is retained.

        Returns:
            Versions that changed state.

        Raises:
            SecretNotFoundError: If the path does not exist.
        """
        path = normalize_path(path)
        with self._lock:
            entry = self._require(path)
            targets = [entry.current_version] if versions is None else list(versions)
            now = self._clock()
            changed = []
            for v in targets:
                meta = entry.versions.get(v)
                if meta is None or not meta.is_live:
                    continue
                entry.versions[v] = VersionMetadata(version=v, created_at=meta.created_at, deleted_at=now)
                changed.append(v)
            return changed

    def undelete(self, path: str, versions: Iterable[int]) -> list[int]:
        """Restore soft-deleted versions. Destroyed versions stay destroyed.

        Returns:
            Versions that changed state.

        Raises:
            SecretNotFoundError: If the path does not exist.
        """
        path = normalize_path(path)
        with self._lock:
            entry = self._require(path)
            changed = []
            for v in versions:
                meta = entry.versions.get(v)
                if meta is None or meta.destroyed or meta.deleted_at is None:
                    continue
                entry.versions[v] = VersionMetadata(version=v, created_at=meta.created_at)
                changed.append(v)
            return changed

    def destroy(self, path: str, versions: Iterable[int]) -> list[int]:
        """Irreversibly remove the data of versions.

        Returns:
            Versions that changed state.

        Raises:
            SecretNotFoundError: If the path does not exist.
        """
        path = normalize_path(path)
        with self._lock:
            entry = self._require(path)
            changed = []
            for v in versions:
                meta = entry.versions.get(v)
                if meta is None or meta.destroyed:
                    continue
                entry.versions[v] = VersionMetadata(
                    version=v, created_at=meta.created_at, deleted_at=meta.deleted_at, destroyed=True
                )
                entry.data.pop(v, None)
                changed.append(v)
            return changed

    def read_metadata(self, path: str) -> SecretMetadata:
        """Get metadata for all versions of a path.

        Raises:
            SecretNotFoundError: If the path does not exist.
        """
        path = normalize_path(path)
        with self._lock:
            entry = self._require(path)
            ordered = sorted(entry.versions)
            return SecretMetadata(
                path=path,
                current_version=entry.current_version,
                oldest_version=ordered[0],
                created_at=entry.versions[ordered[0]].created_at,
                updated_at=entry.versions[ordered[-1]].created_at,
                versions=dict(entry.versions),
            )

    def delete_metadata(self, path: str) -> None:
        """Remove a path with all its versions and metadata (no-op if absent)."""
        path = normalize_path(path)
        with self._lock:
            self._entries.pop(path, None)

    def list(self, prefix: str) -> list[str]:
        """List the immediate children of a prefix.

        Child "directories" end with "/". Paths whose versions are all
        deleted or destroyed are still listed while their metadata exists.

        Returns:
            Sorted child names (empty if nothing lies under the prefix).
        """
        prefix = normalize_path(prefix)
        with self._lock:
            paths = list(self._entries)
        children: set[str] = set()
        for path in paths:
            if not path.startswith(prefix + "/"):
                continue
            rest = path[len(prefix) + 1 :]
            head, sep, _ = rest.partition("/")
            children.add(head + "/" if sep else head)
        return sorted(children)

    def walk(self, prefix: str) -> Iterator[str]:
        """Yield every stored path at or under a prefix, sorted."""
        prefix = normalize_path(prefix)
        with self._lock:
            paths = sorted(self._entries)
        for path in paths:
            if path == prefix or path.startswith(prefix + "/"):
                yield path

    def _require(self, path: str) -> _Entry:
        entry = self._entries.get(path)
        if entry is None or entry.current_version == 0:
            raise SecretNotFoundError(path)
        return entry

    def _prune(self, entry: _Entry) -> None:
        if self._max_versions <= 0:
            return
        while len(entry.versions) > self._max_versions:
            oldest = min(entry.versions)
            del entry.versions[oldest]
            entry.data.pop(oldest, None)
