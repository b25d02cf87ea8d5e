"""Sion agent: streaming Solana tool orchestration with a transaction safety pipeline."""

__version__ = "0.1.0"
