"""
Transaction safety pipeline.

protect -> simulate -> enqueue -> submit -> confirm. The pipeline owns every
``PendingTransaction``; nothing outside it changes their status. Work that
has been enqueued runs to completion or timeout independently of the caller.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from ..chain.base import ChainInstruction
from ..errors import (
    ConfirmationTimeout,
    ErrorTracker,
    InvalidStatusTransition,
    NotFound,
    RetryPolicy,
    SimulationFailed,
    SubmissionFailed,
)
from ...providers.jito import JitoError, JitoRelay
from ...providers.solana_rpc import SolanaRpc, SolanaRpcError
from .confirmation import ConfirmationOutcome, ConfirmationTracker
from .models import (
    PendingTransaction,
    ProtectedInstruction,
    ProtectionConfig,
    ProtectionStrategy,
    SimulationResult,
    TxStatus,
)
from .protection import protect
from .queue import IdentityQueue

logger = logging.getLogger(__name__)

_SUBMIT_ERRORS = (SolanaRpcError, JitoError, httpx.HTTPError)

# Finished for good; timed-out transactions stay until they resolve
_RETIRED = frozenset({TxStatus.CONFIRMED, TxStatus.FAILED, TxStatus.SIMULATED_FAILED})


class TransactionPipeline:
    """Protects, simulates, queues, submits and confirms chain instructions."""

    def __init__(
        self,
        rpc: SolanaRpc,
        confirmation: ConfirmationTracker,
        config: ProtectionConfig,
        relay: Optional[JitoRelay] = None,
        error_tracker: Optional[ErrorTracker] = None,
        bundle_flush_ms: int = 1500,
        simulation_retry: Optional[RetryPolicy] = None,
        retention_seconds: float = 3600,
        max_retained: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rpc = rpc
        self._confirmation = confirmation
        self._config = config
        self._relay = relay
        self._errors = error_tracker or ErrorTracker()
        self._bundle_flush_ms = bundle_flush_ms
        self._simulation_retry = simulation_retry or RetryPolicy(max_attempts=2, initial_delay_seconds=0.2)
        self._retention_seconds = retention_seconds
        self._max_retained = max_retained
        self._clock = clock

        self._transactions: Dict[str, PendingTransaction] = {}
        self._queues: Dict[str, IdentityQueue] = {}
        self._outcomes: Dict[str, asyncio.Future] = {}
        self._tasks: Set[asyncio.Task] = set()
        # id -> time it reached a retired status, oldest first
        self._retired: "OrderedDict[str, float]" = OrderedDict()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> ProtectionConfig:
        return self._config

    def reconfigure(self, config: ProtectionConfig) -> ProtectionConfig:
        """Operator-only replacement of the protection config.

        Instructions already protected keep the strategy they were given.
        """
        previous, self._config = self._config, config
        logger.info(
            "Protection reconfigured: %s -> %s",
            previous.to_dict(),
            config.to_dict(),
        )
        return previous

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def protect(self, instruction: ChainInstruction, config: Optional[ProtectionConfig] = None) -> ProtectedInstruction:
        return protect(instruction, config or self._config)

    async def simulate(
        self,
        protected: ProtectedInstruction,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> PendingTransaction:
        """Dry-run ``protected`` and register it as a pending transaction.

        Raises ``SimulationFailed`` (with logs) when the transaction would
        fail; such a transaction can never be enqueued.
        """
        pending = PendingTransaction(
            protected=protected,
            owner_id=owner_id,
            conversation_id=conversation_id,
        )
        self._prune()
        self._transactions[pending.id] = pending

        try:
            simulation = await self._simulation_retry.run(
                lambda: self._rpc.simulate_transaction(protected.instruction.serialized),
                description="simulateTransaction",
            )
        except (SolanaRpcError, httpx.HTTPError) as exc:
            pending.simulation = SimulationResult(success=False, error=str(exc))
            failure = SimulationFailed(
                f"Simulation could not be run: {exc}",
                details={"transactionId": pending.id},
            )
            self._fail_simulation(pending, failure)
            raise failure from exc

        pending.simulation = SimulationResult(
            success=simulation.success,
            units_consumed=simulation.units_consumed,
            logs=list(simulation.logs),
            error=simulation.err,
        )
        if not simulation.success:
            failure = SimulationFailed(
                f"Transaction would fail on-chain: {simulation.err}",
                logs=simulation.logs,
                details={"transactionId": pending.id},
            )
            self._fail_simulation(pending, failure)
            raise failure

        pending.transition_to(TxStatus.SIMULATED_OK)
        return pending

    def _fail_simulation(self, pending: PendingTransaction, failure: SimulationFailed) -> None:
        pending.transition_to(TxStatus.SIMULATED_FAILED, note=failure.message)
        pending.error = failure.to_payload()
        self._retire(pending)
        self._errors.log_error(
            "pipeline:simulate",
            failure,
            transaction_id=pending.id,
            identity=pending.identity,
        )

    async def enqueue(self, pending: PendingTransaction) -> int:
        """Append a simulated-ok transaction to its identity's queue."""
        if pending.status != TxStatus.SIMULATED_OK:
            raise InvalidStatusTransition(
                pending.status,
                TxStatus.QUEUED,
                f"Only simulated-ok transactions can be queued (status is {pending.status.value})",
            )
        pending.transition_to(TxStatus.QUEUED)
        self._outcomes[pending.id] = asyncio.get_running_loop().create_future()
        position = self._queue_for(pending.identity).put(pending)
        logger.info("Queued transaction %s for %s at position %d", pending.id, pending.identity, position)
        return position

    async def execute(
        self,
        instruction: ChainInstruction,
        owner_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
    ) -> PendingTransaction:
        """Run ``instruction`` through every stage and wait for its outcome.

        Cancelling the caller only stops the wait; queued work carries on
        and stays queryable through ``get``.
        """
        protected = self.protect(instruction)
        pending = await self.simulate(protected, owner_id=owner_id, conversation_id=conversation_id)
        await self.enqueue(pending)
        future = self._outcomes.get(pending.id)
        if future is not None:
            await asyncio.shield(future)
        return pending

    async def wait(self, tx_id: str) -> PendingTransaction:
        """Wait until a queued transaction is resolved or timed out."""
        pending = self.get(tx_id)
        future = self._outcomes.get(tx_id)
        if future is not None:
            await asyncio.shield(future)
        return pending

    # ------------------------------------------------------------------
    # Queue consumer side
    # ------------------------------------------------------------------

    def _queue_for(self, identity: str) -> IdentityQueue:
        queue = self._queues.get(identity)
        if queue is None:
            queue = IdentityQueue(identity, self._release, bundle_flush_ms=self._bundle_flush_ms)
            self._queues[identity] = queue
        return queue

    async def _release(self, batch: List[PendingTransaction]) -> None:
        """Submit one released batch. Never retried.

        Every transaction in ``batch`` leaves ``queued``: it is either
        submitted and tracked or failed and resolved.
        """
        strategy = batch[0].protection_strategy
        serialized = [pending.instruction.serialized for pending in batch]
        try:
            receipt = await self._submit(strategy, serialized)
        except SubmissionFailed as exc:
            self._fail_submission(batch, exc)
            return
        except _SUBMIT_ERRORS as exc:
            self._fail_submission(batch, SubmissionFailed(f"Submission rejected: {exc}", {"strategy": strategy.value}))
            return
        except Exception as exc:
            logger.exception("Unexpected error submitting %d transaction(s) via %s", len(batch), strategy.value)
            self._fail_submission(batch, SubmissionFailed(f"Submission error: {exc}", {"strategy": strategy.value}))
            return

        for pending in batch:
            pending.signature = pending.instruction.signature
            pending.transition_to(TxStatus.SUBMITTED, note=receipt)
            self._spawn(self._track(pending))
        logger.info("Submitted %d transaction(s) via %s", len(batch), strategy.value)

    def _fail_submission(self, batch: List[PendingTransaction], failure: SubmissionFailed) -> None:
        self._errors.log_error(
            "pipeline:submit",
            failure,
            transaction_ids=[pending.id for pending in batch],
            strategy=batch[0].protection_strategy.value,
        )
        for pending in batch:
            pending.transition_to(TxStatus.FAILED, note=failure.message)
            pending.error = failure.to_payload()
            self._retire(pending)
            self._resolve(pending)

    async def _submit(self, strategy: ProtectionStrategy, serialized: List[str]) -> str:
        if strategy in (ProtectionStrategy.BUNDLE, ProtectionStrategy.PRIVATE_SUBMISSION) and self._relay is None:
            raise SubmissionFailed("No private relay configured", {"strategy": strategy.value})
        if strategy == ProtectionStrategy.BUNDLE:
            return await self._relay.send_bundle(serialized)
        if strategy == ProtectionStrategy.PRIVATE_SUBMISSION:
            return await self._relay.send_transaction(serialized[0])
        return await self._rpc.send_transaction(serialized[0])

    async def _track(self, pending: PendingTransaction) -> None:
        try:
            outcome = await self._confirmation.confirm(pending.signature)
        except Exception as exc:
            # Already submitted, so the status is unknown; leave it re-queryable
            self._errors.log_error("pipeline:confirm", exc, transaction_id=pending.id)
            outcome = ConfirmationOutcome(TxStatus.TIMED_OUT)
        try:
            self._apply(pending, outcome)
        finally:
            self._resolve(pending)

    def _apply(self, pending: PendingTransaction, outcome: ConfirmationOutcome) -> None:
        if outcome.confirmations is not None:
            pending.confirmations = outcome.confirmations
        if outcome.status == pending.status or not pending.can_transition_to(outcome.status):
            return

        if outcome.status == TxStatus.CONFIRMED:
            pending.transition_to(TxStatus.CONFIRMED)
            pending.error = None
            logger.info("Transaction %s confirmed (%s)", pending.id, pending.signature)
        elif outcome.status == TxStatus.FAILED:
            pending.transition_to(TxStatus.FAILED, note="chain error")
            pending.error = {
                "code": "transaction_failed",
                "message": "Transaction failed on-chain",
                "details": {"err": outcome.error},
            }
            logger.warning("Transaction %s failed on-chain: %s", pending.id, outcome.error)
        else:
            pending.transition_to(TxStatus.TIMED_OUT)
            timeout = ConfirmationTimeout(
                "Transaction not confirmed in time; its status can be re-queried",
                {"transactionId": pending.id, "signature": pending.signature},
            )
            pending.error = timeout.to_payload()
            self._errors.log_error("pipeline:confirm", timeout, transaction_id=pending.id)
        self._retire(pending)

    def _resolve(self, pending: PendingTransaction) -> None:
        future = self._outcomes.pop(pending.id, None)
        if future is not None and not future.done():
            future.set_result(pending.status)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def _retire(self, pending: PendingTransaction) -> None:
        if pending.status in _RETIRED:
            self._retired[pending.id] = self._clock()

    def _prune(self) -> None:
        """Forget retired transactions past the retention window or the cap."""
        cutoff = self._clock() - self._retention_seconds
        while self._retired:
            tx_id, retired_at = next(iter(self._retired.items()))
            if retired_at > cutoff and len(self._retired) <= self._max_retained:
                break
            self._retired.popitem(last=False)
            self._transactions.pop(tx_id, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, tx_id: str) -> PendingTransaction:
        self._prune()
        pending = self._transactions.get(tx_id)
        if pending is None:
            raise NotFound(f"Transaction {tx_id} not found")
        return pending

    async def refresh(self, tx_id: str) -> PendingTransaction:
        """Re-query a submitted or timed-out transaction against the chain.

        A timed-out transaction may move to confirmed or failed; it never
        goes back to queued.
        """
        pending = self.get(tx_id)
        if pending.status not in (TxStatus.SUBMITTED, TxStatus.TIMED_OUT) or not pending.signature:
            return pending
        outcome = await self._confirmation.query(pending.signature)
        if outcome.status != TxStatus.TIMED_OUT:
            self._apply(pending, outcome)
        elif outcome.confirmations is not None:
            pending.confirmations = outcome.confirmations
        return pending

    def list(
        self,
        identity: Optional[str] = None,
        owner_id: Optional[str] = None,
        status: Optional[TxStatus] = None,
    ) -> List[PendingTransaction]:
        self._prune()
        items = [
            pending for pending in self._transactions.values()
            if (identity is None or pending.identity == identity)
            and (owner_id is None or pending.owner_id == owner_id)
            and (status is None or pending.status == status)
        ]
        return sorted(items, key=lambda p: p.created_at)

    def queue_depth(self, identity: str) -> int:
        queue = self._queues.get(identity)
        return queue.depth if queue else 0

    async def close(self) -> None:
        for queue in self._queues.values():
            await queue.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
