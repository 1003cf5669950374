"""Versioned key/value storage (no authorization; see pep/)."""

from tenant_vault.storage.kv import SecretMetadata, SecretRecord, VersionedKVStore, VersionMetadata

__all__ = [
    "SecretMetadata",
    "SecretRecord",
    "VersionMetadata",
    "VersionedKVStore",
]
