"""Background lease sweep.

Each pass:
1. Moves ACTIVE leases past expires_at to REVOKING (trigger "expiry")
2. Makes one destroy attempt for every revocation job whose
   next_attempt_at has passed

The sweep never gives up on a job; failed attempts are rescheduled with
capped exponential backoff by the broker.
"""

from __future__ import annotations

__all__ = [
    "LeaseSweeper",
    "SweepResult",
]

import asyncio
import logging
from dataclasses import dataclass

from tenant_vault.broker.broker import CredentialBroker
from tenant_vault.constants import APP_NAME, DEFAULT_SWEEP_INTERVAL_SECONDS
from tenant_vault.telemetry.system.system_logger import get_system_logger

_logger = logging.getLogger(f"{APP_NAME}.broker.sweeper")
_system_logger = get_system_logger()


@dataclass(frozen=True)
class SweepResult:
    """Counts from one sweep pass."""

    expired: int = 0
    revoked: int = 0
    pending: int = 0


class LeaseSweeper:
    """Periodic driver for lease expiry and revocation retries.

    Usage:
        sweeper = LeaseSweeper(broker, interval=30.0)
        task = asyncio.create_task(sweeper.run())
        ...
        sweeper.stop()
        await task
    """

    def __init__(self, broker: CredentialBroker, interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS) -> None:
        self._broker = broker
        self._interval = interval
        self._stopped = asyncio.Event()

    @property
    def interval(self) -> float:
        return self._interval

    async def sweep_once(self) -> SweepResult:
        """Run one pass over leases and revocation jobs."""
        expired = await self._broker.expire_due()
        revoked, pending = await self._broker.retry_due()
        result = SweepResult(expired=expired, revoked=revoked, pending=pending)
        if expired or revoked or pending:
            _logger.debug(
                {
                    "event": "lease_sweep",
                    "message": f"Sweep: {expired} expired, {revoked} revoked, {pending} pending",
                    "expired": expired,
                    "revoked": revoked,
                    "pending": pending,
                }
            )
        return result

    async def run(self) -> None:
        """Sweep every interval until stop() is called."""
        while not self._stopped.is_set():
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Keep sweeping; pending jobs are durable and retried next pass
                _system_logger.error(
                    {
                        "event": "lease_sweep_failed",
                        "message": f"Lease sweep failed: {e}",
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True,
                )
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped.set()
