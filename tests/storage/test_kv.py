"""Tests for the versioned key/value store.

Tests cover:
- Versioned writes and reads
- Soft delete, undelete and destroy
- Check-and-set
- Listing, walking and version pruning
"""

from __future__ import annotations

import pytest

from tenant_vault.exceptions import CheckAndSetError, SecretNotFoundError, SecretVersionDeletedError
from tenant_vault.pdp.matcher import InvalidPathError
from tenant_vault.storage.kv import VersionedKVStore

PATH = "secret/alpha/app-config"


@pytest.fixture
def kv(clock) -> VersionedKVStore:
    return VersionedKVStore(clock=clock)


class TestVersions:
    """Writes create versions, reads default to the latest."""

    def test_write_then_read_versions(self, kv: VersionedKVStore) -> None:
        """A value written as v1 then v2 reads as v2 by default and v1 on request."""
        assert kv.write(PATH, {"log_level": "info"}).version == 1
        assert kv.write(PATH, {"log_level": "debug"}).version == 2

        assert kv.read(PATH).data == {"log_level": "debug"}
        assert kv.read(PATH).version == 2
        assert kv.read(PATH, version=1).data == {"log_level": "info"}

    def test_read_returns_copy(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"nested": {"a": "1"}})
        kv.read(PATH).data["nested"]["a"] = "changed"
        assert kv.read(PATH).data == {"nested": {"a": "1"}}

    def test_write_stores_copy(self, kv: VersionedKVStore) -> None:
        data = {"a": "1"}
        kv.write(PATH, data)
        data["a"] = "changed"
        assert kv.read(PATH).data == {"a": "1"}

    def test_path_normalized(self, kv: VersionedKVStore) -> None:
        kv.write(f"/{PATH}/", {"a": "1"})
        assert kv.read(PATH).path == PATH

    def test_traversal_rejected(self, kv: VersionedKVStore) -> None:
        with pytest.raises(InvalidPathError):
            kv.write("secret/alpha/../beta/app-config", {"a": "1"})

    def test_missing(self, kv: VersionedKVStore) -> None:
        with pytest.raises(SecretNotFoundError):
            kv.read(PATH)
        kv.write(PATH, {"a": "1"})
        with pytest.raises(SecretNotFoundError):
            kv.read(PATH, version=7)

    def test_metadata(self, kv: VersionedKVStore, clock) -> None:
        kv.write(PATH, {"a": "1"})
        clock.advance(60)
        kv.write(PATH, {"a": "2"})

        meta = kv.read_metadata(PATH)
        assert meta.current_version == 2
        assert meta.oldest_version == 1
        assert (meta.updated_at - meta.created_at).total_seconds() == 60
        assert sorted(meta.versions) == [1, 2]


class TestDeletion:
    """Soft delete, undelete and destroy."""

    def test_soft_delete_and_undelete(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        assert kv.delete(PATH) == [1]
        assert not kv.exists(PATH)

        with pytest.raises(SecretVersionDeletedError):
            kv.read(PATH)
        assert kv.read_metadata(PATH).versions[1].deleted_at is not None

        assert kv.undelete(PATH, [1]) == [1]
        assert kv.read(PATH).data == {"a": "1"}

    def test_delete_is_idempotent(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        kv.delete(PATH)
        assert kv.delete(PATH) == []

    def test_delete_older_version_keeps_current(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        kv.write(PATH, {"a": "2"})
        kv.delete(PATH, [1])
        assert kv.read(PATH).data == {"a": "2"}
        with pytest.raises(SecretVersionDeletedError):
            kv.read(PATH, version=1)

    def test_destroy_is_irreversible(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        kv.delete(PATH)
        assert kv.destroy(PATH, [1]) == [1]

        assert kv.undelete(PATH, [1]) == []
        with pytest.raises(SecretNotFoundError):
            kv.read(PATH, version=1)
        assert kv.read_metadata(PATH).versions[1].destroyed

    def test_write_after_delete_creates_new_version(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        kv.delete(PATH)
        assert kv.write(PATH, {"a": "2"}).version == 2
        assert kv.exists(PATH)

    def test_delete_metadata_removes_everything(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        kv.delete_metadata(PATH)
        kv.delete_metadata(PATH)
        with pytest.raises(SecretNotFoundError):
            kv.read_metadata(PATH)
        assert kv.write(PATH, {"a": "1"}, cas=0).version == 1

    def test_operations_on_missing_path(self, kv: VersionedKVStore) -> None:
        with pytest.raises(SecretNotFoundError):
            kv.delete(PATH)
        with pytest.raises(SecretNotFoundError):
            kv.destroy(PATH, [1])


class TestCheckAndSet:
    """Optimistic concurrency on writes."""

    def test_cas_zero_only_for_new_paths(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"}, cas=0)
        with pytest.raises(CheckAndSetError) as exc_info:
            kv.write(PATH, {"a": "2"}, cas=0)
        assert exc_info.value.current == 1

    def test_cas_matches_current(self, kv: VersionedKVStore) -> None:
        kv.write(PATH, {"a": "1"})
        assert kv.write(PATH, {"a": "2"}, cas=1).version == 2
        with pytest.raises(CheckAndSetError):
            kv.write(PATH, {"a": "3"}, cas=1)

    def test_failed_cas_leaves_no_entry(self, kv: VersionedKVStore) -> None:
        with pytest.raises(CheckAndSetError):
            kv.write(PATH, {"a": "1"}, cas=3)
        assert kv.list("secret/alpha") == []


class TestListing:
    """Listing and walking prefixes."""

    def test_list_children(self, kv: VersionedKVStore) -> None:
        kv.write("secret/alpha/app-config", {"a": "1"})
        kv.write("secret/alpha/database/postgres", {"a": "1"})
        kv.write("secret/alpha/database/redis", {"a": "1"})
        kv.write("secret/alphabet/other", {"a": "1"})

        assert kv.list("secret/alpha") == ["app-config", "database/"]
        assert kv.list("secret/alpha/database") == ["postgres", "redis"]
        assert kv.list("secret/gamma") == []

    def test_walk(self, kv: VersionedKVStore) -> None:
        kv.write("secret/alpha/b", {"a": "1"})
        kv.write("secret/alpha/a/c", {"a": "1"})
        kv.write("secret/beta/a", {"a": "1"})
        assert list(kv.walk("secret/alpha")) == ["secret/alpha/a/c", "secret/alpha/b"]


class TestPruning:
    """max_versions bounds kept versions."""

    def test_oldest_versions_pruned(self, clock) -> None:
        kv = VersionedKVStore(max_versions=2, clock=clock)
        for i in range(4):
            kv.write(PATH, {"i": str(i)})

        meta = kv.read_metadata(PATH)
        assert meta.current_version == 4
        assert meta.oldest_version == 3
        with pytest.raises(SecretNotFoundError):
            kv.read(PATH, version=1)
