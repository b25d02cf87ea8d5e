from .models import (
    TRANSITIONS,
    PendingTransaction,
    ProtectedInstruction,
    ProtectionConfig,
    ProtectionStrategy,
    SimulationResult,
    TxStatus,
)
from .protection import protect
from .confirmation import ConfirmationOutcome, ConfirmationTracker
from .queue import IdentityQueue
from .pipeline import TransactionPipeline

__all__ = [
    "TRANSITIONS",
    "PendingTransaction",
    "ProtectedInstruction",
    "ProtectionConfig",
    "ProtectionStrategy",
    "SimulationResult",
    "TxStatus",
    "protect",
    "ConfirmationOutcome",
    "ConfirmationTracker",
    "IdentityQueue",
    "TransactionPipeline",
]
