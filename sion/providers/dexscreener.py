"""
DexScreener API provider.

Pair-level liquidity for a token across Solana DEXs. No API key required.
"""

from typing import Any, Dict, List, Optional

import httpx

from .base import Provider
from ..core.errors import DataUnavailable


class DexScreenerProvider(Provider):
    name = "dexscreener"
    timeout_s = 15

    def __init__(self, base_url: str = "https://api.dexscreener.com/latest/dex", client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.base_url = base_url.rstrip("/")

    async def ready(self) -> bool:
        return True

    async def get_token_pairs(self, address: str, chain_id: str = "solana") -> List[Dict[str, Any]]:
        """All pairs trading ``address`` on ``chain_id``."""
        client = await self._get_client()
        response = await client.get(f"{self.base_url}/tokens/{address}")
        response.raise_for_status()
        pairs = [
            pair for pair in (response.json().get("pairs") or [])
            if pair.get("chainId") == chain_id
        ]
        if not pairs:
            raise DataUnavailable(f"DexScreener lists no {chain_id} pairs for {address}", source=self.name)
        return pairs
