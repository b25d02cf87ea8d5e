"""
Chain agent interface.

A chain agent wraps one signing identity and a chain connection. Mutating
operations build and sign a transaction and return it as a
``ChainInstruction``; submission is left to the transaction pipeline.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from ..errors import SionError


class InstructionKind(str, Enum):
    STAKE = "stake"
    MINT_NFT = "mint_nft"
    SWAP = "swap"
    DEPLOY_TOKEN = "deploy_token"
    LAUNCH_TOKEN = "launch_token"


@dataclass(frozen=True)
class ChainInstruction:
    """A signed, not yet submitted transaction."""

    kind: InstructionKind
    identity: str            # signer public key
    serialized: str          # base64 encoded signed transaction
    signature: str           # first signature, base58
    description: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))

    def summary(self) -> Dict[str, Any]:
        return {
            "instructionId": self.id,
            "kind": self.kind.value,
            "signature": self.signature,
            "description": self.description,
            **self.metadata,
        }


@dataclass(frozen=True)
class TokenPrice:
    symbol: str
    mint: str
    name: str
    decimals: int
    price_usd: float
    source: str = "jupiter"
    as_of: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "mint": self.mint,
            "name": self.name,
            "decimals": self.decimals,
            "priceUsd": self.price_usd,
            "source": self.source,
            "asOf": self.as_of.isoformat(),
        }


class ChainOperationError(SionError):
    """A chain or swap-provider call failed while building a transaction."""

    code = "chain_operation_failed"

    def __init__(self, message: str, retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.retryable = retryable


class ChainAgent(ABC):
    """Primitive chain operations for one signing identity."""

    @property
    @abstractmethod
    def identity(self) -> str:
        """Public key of the signing identity."""

    @abstractmethod
    async def resolve_token(self, symbol: str) -> Dict[str, Any]:
        """Resolve a ticker or mint to ``{address, symbol, name, decimals}``."""

    @abstractmethod
    async def get_token_price(self, symbol: str) -> TokenPrice:
        """Raise ``DataUnavailable`` when the token or its price is unknown."""

    @abstractmethod
    async def stake(self, amount: float, slippage_bps: int = 50, priority_fee: int = 0) -> ChainInstruction:
        """Stake ``amount`` SOL, accepting up to ``slippage_bps`` on the conversion."""

    @abstractmethod
    async def mint_nft(
        self,
        collection: str,
        metadata: Dict[str, Any],
        recipient: Optional[str] = None,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        pass

    @abstractmethod
    async def swap(
        self,
        from_token: str,
        to_token: str,
        amount: float,
        slippage_bps: int,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        pass

    @abstractmethod
    async def deploy_token(
        self,
        name: str,
        ticker: str,
        uri: str,
        decimals: int,
        supply: int,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        pass

    @abstractmethod
    async def launch_token(
        self,
        name: str,
        ticker: str,
        description: str,
        image_uri: str,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        pass
