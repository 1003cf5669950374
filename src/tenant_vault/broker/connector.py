"""Backend connector interface for dynamic credentials.

The broker is the only caller. Both operations must be idempotent because
the broker retries after network failures without knowing whether the
previous attempt reached the backend:

- create_principal for a username that already exists (with the same role)
  returns fresh credentials for it instead of failing
- destroy_principal for a username that does not exist succeeds

InMemoryConnector implements the contract for tests and local runs and can
be told to fail a number of calls to exercise retry paths.
"""

from __future__ import annotations

__all__ = [
    "BackendConnector",
    "Credential",
    "InMemoryConnector",
]

import secrets
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from tenant_vault.exceptions import BackendUnavailableError


@dataclass(frozen=True)
class Credential:
    """Backend-issued credential.

    Attributes:
        username: Principal name (also the lease's credential_ref).
        password: Secret; returned to the caller once, never stored.
    """

    username: str
    password: str = field(repr=False)


@runtime_checkable
class BackendConnector(Protocol):
    """Protocol for backends that issue and destroy principals."""

    async def create_principal(self, role: str, username: str) -> Credential:
        """Create (or re-key) a principal with the role's grants.

        Raises:
            BackendUnavailableError: If the backend cannot be reached.
        """
        ...

    async def destroy_principal(self, username: str) -> None:
        """Destroy a principal. Succeeds if it does not exist.

        Raises:
            BackendUnavailableError: If the backend cannot be reached.
        """
        ...


class InMemoryConnector:
    """Connector keeping principals in a dict.

    Attributes:
        principals: username -> role of principals that currently exist.
        create_calls: Usernames passed to create_principal, in order.
        destroy_calls: Usernames passed to destroy_principal, in order
            (failed attempts included).
        destroyed: Usernames whose destroy succeeded, in order.
    """

    def __init__(self, *, fail_creates: int = 0, fail_destroys: int = 0) -> None:
        """Initialize the connector.

        Args:
            fail_creates: Number of upcoming create calls that fail.
            fail_destroys: Number of upcoming destroy calls that fail.
        """
        self.principals: dict[str, str] = {}
        self.create_calls: list[str] = []
        self.destroy_calls: list[str] = []
        self.destroyed: list[str] = []
        self.fail_creates = fail_creates
        self.fail_destroys = fail_destroys

    async def create_principal(self, role: str, username: str) -> Credential:
        self.create_calls.append(username)
        if self.fail_creates > 0:
            self.fail_creates -= 1
            raise BackendUnavailableError("backend unavailable (create)")
        self.principals[username] = role
        return Credential(username=username, password=secrets.token_urlsafe(24))

    async def destroy_principal(self, username: str) -> None:
        self.destroy_calls.append(username)
        if self.fail_destroys > 0:
            self.fail_destroys -= 1
            raise BackendUnavailableError("backend unavailable (destroy)")
        if self.principals.pop(username, None) is not None:
            self.destroyed.append(username)
