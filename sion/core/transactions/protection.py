"""
MEV protection.

``protect`` decides how an instruction will reach the network. The actual
grouping and holding happen in the identity queue.
"""

import time
from typing import Callable

from ..chain.base import ChainInstruction
from .models import ProtectedInstruction, ProtectionConfig, ProtectionStrategy


def protect(
    instruction: ChainInstruction,
    config: ProtectionConfig,
    now: Callable[[], float] = time.monotonic,
) -> ProtectedInstruction:
    """Wrap ``instruction`` with the strategy from ``config``.

    ``now`` must be the clock the identity queue waits on.
    """
    strategy = config.effective_strategy

    if strategy == ProtectionStrategy.TIME_DELAY:
        return ProtectedInstruction(
            instruction=instruction,
            strategy=strategy,
            max_priority_fee=config.max_priority_fee,
            release_at=now() + config.delay_ms / 1000,
        )
    if strategy == ProtectionStrategy.BUNDLE:
        return ProtectedInstruction(
            instruction=instruction,
            strategy=strategy,
            max_priority_fee=config.max_priority_fee,
            bundle_size=config.bundle_size,
        )
    if strategy == ProtectionStrategy.PRIVATE_SUBMISSION:
        return ProtectedInstruction(
            instruction=instruction,
            strategy=strategy,
            max_priority_fee=config.max_priority_fee,
        )
    return ProtectedInstruction(instruction=instruction, strategy=ProtectionStrategy.NONE)
