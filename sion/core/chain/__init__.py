from .base import ChainAgent, ChainInstruction, ChainOperationError, InstructionKind, TokenPrice
from .solana_agent import SolanaAgent

__all__ = [
    "ChainAgent",
    "ChainInstruction",
    "ChainOperationError",
    "InstructionKind",
    "TokenPrice",
    "SolanaAgent",
]
