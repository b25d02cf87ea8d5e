"""
Per-identity transaction queue.

One ``IdentityQueue`` exists per signing identity and owns a single worker
task. Items are released to the network strictly in enqueue order; the only
grouping is a run of consecutive bundle items, which goes out as one bundle.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from .models import PendingTransaction, ProtectionStrategy

logger = logging.getLogger(__name__)

ReleaseCallback = Callable[[List[PendingTransaction]], Awaitable[None]]


class IdentityQueue:
    """FIFO with a single consumer for one signing identity."""

    def __init__(
        self,
        identity: str,
        release: ReleaseCallback,
        bundle_flush_ms: int = 1500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.identity = identity
        self._release = release
        self._bundle_flush_s = bundle_flush_ms / 1000
        self._clock = clock
        self._queue: "asyncio.Queue[PendingTransaction]" = asyncio.Queue()
        self._carry: Optional[PendingTransaction] = None
        self._pending = 0
        self._worker: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def depth(self) -> int:
        """Items enqueued and not yet released."""
        return self._pending

    def put(self, pending: PendingTransaction) -> int:
        """Append ``pending`` and return its 1-based position in the queue."""
        if self._closed:
            raise RuntimeError(f"Queue for {self.identity} is closed")
        self._pending += 1
        position = self._pending
        pending.queue_position = position
        self._queue.put_nowait(pending)
        self._ensure_worker()
        return position

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._run(), name=f"tx-queue:{self.identity[:8]}"
            )

    async def _next(self) -> PendingTransaction:
        if self._carry is not None:
            item, self._carry = self._carry, None
            return item
        return await self._queue.get()

    async def _run(self) -> None:
        while True:
            item = await self._next()
            strategy = item.protection_strategy

            if strategy == ProtectionStrategy.TIME_DELAY:
                wait = (item.protected.release_at or 0) - self._clock()
                if wait > 0:
                    # Holds every later item too
                    await asyncio.sleep(wait)
                batch = [item]
            elif strategy == ProtectionStrategy.BUNDLE:
                batch = await self._collect_bundle(item)
            else:
                batch = [item]

            try:
                await self._release(batch)
            except Exception:
                logger.exception(
                    "Release of %d transaction(s) for %s raised", len(batch), self.identity
                )
            finally:
                self._pending -= len(batch)
                for pending in batch:
                    pending.queue_position = None

    async def _collect_bundle(self, first: PendingTransaction) -> List[PendingTransaction]:
        """Group ``first`` with directly following bundle items.

        Stops at the bundle size, at the first non-bundle item (which is
        carried over as the next item) or when the flush window closes.
        """
        batch = [first]
        limit = first.protected.bundle_size
        deadline = self._clock() + self._bundle_flush_s

        while len(batch) < limit:
            if self._queue.empty():
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                try:
                    candidate = await asyncio.wait_for(self._queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
            else:
                candidate = self._queue.get_nowait()

            if candidate.protection_strategy == ProtectionStrategy.BUNDLE:
                batch.append(candidate)
            else:
                self._carry = candidate
                break
        return batch

    async def close(self) -> None:
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
