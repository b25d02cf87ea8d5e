"""
Signature confirmation tracking over ``getSignatureStatuses``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import RetryPolicy
from ...providers.solana_rpc import SignatureStatus, SolanaRpc
from .models import TxStatus

logger = logging.getLogger(__name__)

MAX_POLL_INTERVAL_SECONDS = 5.0
POLL_BACKOFF = 1.5


@dataclass
class ConfirmationOutcome:
    status: TxStatus                      # CONFIRMED, FAILED or TIMED_OUT
    confirmations: Optional[int] = None
    slot: Optional[int] = None
    error: Optional[Any] = None


class ConfirmationTracker:
    """Polls the RPC node until a signature confirms, fails or times out."""

    def __init__(
        self,
        rpc: SolanaRpc,
        required_confirmations: int = 2,
        timeout_ms: int = 60000,
        poll_interval_ms: int = 1000,
        read_retry: Optional[RetryPolicy] = None,
    ):
        self._rpc = rpc
        self.required_confirmations = required_confirmations
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self._read_retry = read_retry or RetryPolicy(max_attempts=2, initial_delay_seconds=0.2)

    async def confirm(
        self,
        signature: str,
        required_confirmations: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> ConfirmationOutcome:
        """Wait for ``signature`` to reach the required depth.

        Returns ``TIMED_OUT`` rather than raising when the deadline passes.
        """
        required = self.required_confirmations if required_confirmations is None else required_confirmations
        timeout = (self.timeout_ms if timeout_ms is None else timeout_ms) / 1000
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        interval = self.poll_interval_ms / 1000
        last_seen: Optional[int] = None

        while True:
            outcome = await self.query(signature, required)
            if outcome.status != TxStatus.TIMED_OUT:
                return outcome
            last_seen = outcome.confirmations if outcome.confirmations is not None else last_seen

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.info("Signature %s not confirmed after %.1fs", signature, timeout)
                return ConfirmationOutcome(TxStatus.TIMED_OUT, confirmations=last_seen)
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * POLL_BACKOFF, MAX_POLL_INTERVAL_SECONDS)

    async def query(self, signature: str, required_confirmations: Optional[int] = None) -> ConfirmationOutcome:
        """One status lookup. ``TIMED_OUT`` here means "not resolved yet"."""
        required = self.required_confirmations if required_confirmations is None else required_confirmations
        statuses = await self._read_retry.run(
            lambda: self._rpc.get_signature_statuses([signature]),
            description="getSignatureStatuses",
        )
        status: Optional[SignatureStatus] = statuses[0] if statuses else None
        if status is None:
            return ConfirmationOutcome(TxStatus.TIMED_OUT)
        if status.err is not None:
            return ConfirmationOutcome(
                TxStatus.FAILED,
                confirmations=status.confirmations,
                slot=status.slot,
                error=status.err,
            )
        # confirmations is null once the slot is rooted
        if status.confirmation_status == "finalized" or status.confirmations is None:
            return ConfirmationOutcome(TxStatus.CONFIRMED, confirmations=status.confirmations, slot=status.slot)
        if status.confirmations >= required:
            return ConfirmationOutcome(TxStatus.CONFIRMED, confirmations=status.confirmations, slot=status.slot)
        return ConfirmationOutcome(TxStatus.TIMED_OUT, confirmations=status.confirmations, slot=status.slot)
