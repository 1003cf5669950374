"""Offline verification key cache.

Keys are loaded once when the trust domain is configured and afterwards
only by refresh() (called by the operator or run_refresh_loop()). Lookups
never touch the network: a key id that is not cached is simply absent.

A failed refresh keeps the previous key set; it never empties the cache.
"""

from __future__ import annotations

__all__ = [
    "KeyCache",
]

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx
from jwt import PyJWK, PyJWKSet
from jwt.exceptions import PyJWKSetError

from tenant_vault.config import OfflineVerification
from tenant_vault.constants import APP_NAME, JWKS_FETCH_TIMEOUT_SECONDS
from tenant_vault.exceptions import ConfigurationError

_logger = logging.getLogger(f"{APP_NAME}.security.auth.key_cache")


class KeyCache:
    """Locally cached JSON Web Key Set for one trust domain.

    Usage:
        cache = KeyCache(issuer, offline_config)
        await cache.load()              # configuration time
        key = cache.get_key(kid)        # request time, no I/O
        task = asyncio.create_task(cache.run_refresh_loop())
    """

    def __init__(
        self,
        issuer: str,
        config: OfflineVerification,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize an empty cache.

        Args:
            issuer: Issuer the keys belong to (for logging).
            config: Offline verification settings with exactly one key source.
            transport: Optional httpx transport (tests inject a mock).
        """
        self._issuer = issuer
        self._config = config
        self._transport = transport
        self._keys: dict[str, PyJWK] = {}
        self._loaded_at: float | None = None

    @property
    def is_loaded(self) -> bool:
        return self._loaded_at is not None

    @property
    def key_ids(self) -> frozenset[str]:
        return frozenset(self._keys)

    @property
    def age_seconds(self) -> float | None:
        """Seconds since the key set was last loaded, or None if never."""
        if self._loaded_at is None:
            return None
        return time.monotonic() - self._loaded_at

    def get_key(self, kid: str | None) -> PyJWK | None:
        """Get a cached key by id. Never performs I/O."""
        if kid is None:
            return None
        return self._keys.get(kid)

    async def load(self) -> None:
        """Load the key set at configuration time.

        Raises:
            ConfigurationError: If the key source cannot be read or holds no
                usable keys. Without keys the trust domain cannot verify
                anything, so startup must not continue.
        """
        try:
            data = await self._read_source()
            self._install(data)
        except (httpx.HTTPError, OSError, ValueError, PyJWKSetError) as e:
            raise ConfigurationError(
                f"Cannot load verification keys for issuer {self._issuer}: {type(e).__name__}: {e}"
            ) from e

    def load_dict(self, data: dict[str, Any]) -> None:
        """Install a pre-imported key set ({"keys": [...]}).

        Raises:
            PyJWKSetError: If the set holds no usable keys.
        """
        self._install(data)

    async def refresh(self) -> bool:
        """Reload the key set from its source.

        On failure the previous keys stay in place and the error is logged.

        Returns:
            True if the key set was replaced.
        """
        try:
            data = await self._read_source()
            self._install(data)
        except (httpx.HTTPError, OSError, ValueError, PyJWKSetError) as e:
            _logger.warning(
                {
                    "event": "jwks_refresh_failed",
                    "message": f"Key refresh failed for {self._issuer}, keeping {len(self._keys)} cached keys",
                    "issuer": self._issuer,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
            return False
        return True

    async def run_refresh_loop(self) -> None:
        """Refresh keys on the configured cadence until cancelled."""
        interval = self._config.refresh_interval_seconds
        while True:
            await asyncio.sleep(interval)
            await self.refresh()

    async def _read_source(self) -> dict[str, Any]:
        if self._config.jwks is not None:
            return self._config.jwks

        if self._config.jwks_file is not None:
            path = Path(self._config.jwks_file).expanduser()
            with open(path, "r", encoding="utf-8") as f:
                data: dict[str, Any] = json.load(f)
            return data

        if self._config.jwks_uri is None:
            raise ValueError("no key source configured")

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(JWKS_FETCH_TIMEOUT_SECONDS, connect=JWKS_FETCH_TIMEOUT_SECONDS),
            transport=self._transport,
        ) as client:
            response = await client.get(self._config.jwks_uri, follow_redirects=True)
            response.raise_for_status()
            result: dict[str, Any] = response.json()
            return result

    def _install(self, data: dict[str, Any]) -> None:
        jwk_set = PyJWKSet.from_dict(data)
        keys = {k.key_id: k for k in jwk_set.keys if k.key_id}
        if not keys:
            raise PyJWKSetError("key set holds no keys with a key id")

        self._keys = keys
        self._loaded_at = time.monotonic()
        _logger.info(
            {
                "event": "jwks_loaded",
                "message": f"Loaded {len(keys)} verification keys for {self._issuer}",
                "issuer": self._issuer,
                "key_ids": sorted(keys),
            }
        )
