"""
Transaction pipeline models.

``PendingTransaction`` is owned by the pipeline; views only ever receive
``to_dict()`` snapshots of it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from ..chain.base import ChainInstruction
from ..errors import InvalidStatusTransition


class TxStatus(str, Enum):
    """Transaction lifecycle status."""
    SIMULATING = "simulating"
    SIMULATED_OK = "simulated-ok"
    SIMULATED_FAILED = "simulated-failed"
    QUEUED = "queued"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed-out"


TRANSITIONS: Dict[TxStatus, Set[TxStatus]] = {
    TxStatus.SIMULATING: {TxStatus.SIMULATED_OK, TxStatus.SIMULATED_FAILED},
    TxStatus.SIMULATED_OK: {TxStatus.QUEUED},
    TxStatus.QUEUED: {TxStatus.SUBMITTED, TxStatus.FAILED},
    TxStatus.SUBMITTED: {TxStatus.CONFIRMED, TxStatus.FAILED, TxStatus.TIMED_OUT},
    # Timed-out transactions may still land
    TxStatus.TIMED_OUT: {TxStatus.CONFIRMED, TxStatus.FAILED},
    TxStatus.CONFIRMED: set(),
    TxStatus.FAILED: set(),
    TxStatus.SIMULATED_FAILED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


class ProtectionStrategy(str, Enum):
    NONE = "none"                              # public RPC submission
    BUNDLE = "bundle"
    PRIVATE_SUBMISSION = "private-submission"
    TIME_DELAY = "time-delay"


@dataclass(frozen=True)
class ProtectionConfig:
    """MEV protection settings. Replaced only by the operator."""
    enabled: bool = True
    strategy: ProtectionStrategy = ProtectionStrategy.BUNDLE
    max_priority_fee: int = 1000               # micro-lamports per compute unit
    bundle_size: int = 3
    delay_ms: int = 2000

    def __post_init__(self):
        if self.strategy == ProtectionStrategy.NONE and self.enabled:
            raise ValueError("An enabled protection config needs a strategy")
        if not 1 <= self.bundle_size <= 5:
            raise ValueError("bundle_size must be between 1 and 5")
        if self.delay_ms < 0 or self.max_priority_fee < 0:
            raise ValueError("delay_ms and max_priority_fee must not be negative")

    @property
    def effective_strategy(self) -> ProtectionStrategy:
        return self.strategy if self.enabled else ProtectionStrategy.NONE

    @property
    def priority_fee(self) -> int:
        """Compute unit price attached to built transactions."""
        return self.max_priority_fee if self.enabled else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "strategy": self.strategy.value,
            "maxPriorityFee": self.max_priority_fee,
            "bundleSize": self.bundle_size,
            "delayMs": self.delay_ms,
        }


@dataclass(frozen=True)
class ProtectedInstruction:
    """A chain instruction with its protection applied. The original is untouched."""
    instruction: ChainInstruction
    strategy: ProtectionStrategy
    max_priority_fee: int = 0
    bundle_size: int = 1
    release_at: Optional[float] = None         # loop-monotonic seconds, time-delay only

    @property
    def identity(self) -> str:
        return self.instruction.identity

    @property
    def signature(self) -> str:
        return self.instruction.signature


@dataclass
class SimulationResult:
    success: bool
    units_consumed: Optional[int] = None
    logs: List[str] = field(default_factory=list)
    error: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "unitsConsumed": self.units_consumed,
            "logs": self.logs,
            "error": self.error,
        }


@dataclass
class StatusChange:
    status: TxStatus
    at: datetime
    note: Optional[str] = None


@dataclass
class PendingTransaction:
    """A transaction moving through protect, simulate, queue and confirm."""
    protected: ProtectedInstruction
    owner_id: Optional[str] = None
    conversation_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    status: TxStatus = TxStatus.SIMULATING
    simulation: Optional[SimulationResult] = None
    queue_position: Optional[int] = None
    signature: Optional[str] = None
    confirmations: Optional[int] = None
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    history: List[StatusChange] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append(StatusChange(self.status, self.created_at))

    @property
    def instruction(self) -> ChainInstruction:
        return self.protected.instruction

    @property
    def identity(self) -> str:
        return self.protected.identity

    @property
    def protection_strategy(self) -> ProtectionStrategy:
        return self.protected.strategy

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, target: TxStatus) -> bool:
        return target in TRANSITIONS.get(self.status, set())

    def transition_to(self, target: TxStatus, note: Optional[str] = None) -> None:
        if not self.can_transition_to(target):
            raise InvalidStatusTransition(self.status, target)
        now = datetime.now(timezone.utc)
        self.status = target
        self.updated_at = now
        self.history.append(StatusChange(target, now, note))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "identity": self.identity,
            "kind": self.instruction.kind.value,
            "description": self.instruction.description,
            "protectionStrategy": self.protection_strategy.value,
            "status": self.status.value,
            "signature": self.signature,
            "confirmations": self.confirmations,
            "queuePosition": self.queue_position,
            "simulation": self.simulation.to_dict() if self.simulation else None,
            "error": self.error,
            "conversationId": self.conversation_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "history": [
                {"status": change.status.value, "at": change.at.isoformat(), "note": change.note}
                for change in self.history
            ],
        }
