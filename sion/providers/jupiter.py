"""
Jupiter provider for Solana.

Token metadata and prices come from Jupiter's verified token list and price
API. Swaps (and SOL staking, which is a SOL to jupSOL swap) are quoted and
built by Jupiter's v6 swap API; the returned transaction is unsigned.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .base import Provider

# Well-known token mints
NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
JUPSOL_MINT = "jupSoLaHXQiZZTSfEWMTRRgpnyFm8f6sZdosWBjx93v"

WELL_KNOWN_MINTS: Dict[str, str] = {
    "sol": NATIVE_SOL_MINT,
    "wsol": NATIVE_SOL_MINT,
    "usdc": USDC_MINT,
    "usdt": USDT_MINT,
    "jupsol": JUPSOL_MINT,
}


@dataclass
class JupiterToken:
    """Parsed Jupiter token metadata."""

    address: str  # Mint address (Base58)
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "JupiterToken":
        return cls(
            address=data.get("address", ""),
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=data.get("decimals", 9),
            logo_uri=data.get("logoURI"),
            tags=data.get("tags") or [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "logo_uri": self.logo_uri,
            "tags": self.tags,
        }


class JupiterProvider(Provider):
    """
    Jupiter token list and price provider.

    The verified list is cached in memory and indexed by mint and by symbol.
    Lookups refresh it once the TTL passes; a failed refresh keeps serving
    the stale list.
    """

    name = "jupiter"
    timeout_s = 15

    def __init__(
        self,
        token_list_url: str,
        price_url: str,
        cache_ttl_seconds: int = 3600,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(client)
        self.token_list_url = token_list_url
        self.price_url = price_url
        self._by_mint: Dict[str, JupiterToken] = {}
        self._symbol_index: Dict[str, List[JupiterToken]] = {}
        self._cache_loaded = False
        self._cache_lock = asyncio.Lock()
        self._last_refresh: float = 0
        self._cache_ttl_seconds = cache_ttl_seconds

    async def ready(self) -> bool:
        return True

    async def health_check(self) -> Dict[str, Any]:
        try:
            await self._ensure_cache()
            return {"status": "healthy", "cached_tokens": len(self._by_mint)}
        except httpx.HTTPError as e:
            return {"status": "error", "reason": str(e)}

    async def _ensure_cache(self) -> None:
        """Load token list into memory if not cached or expired."""
        async with self._cache_lock:
            now = time.monotonic()
            if self._cache_loaded and (now - self._last_refresh) < self._cache_ttl_seconds:
                return

            client = await self._get_client()
            try:
                resp = await client.get(self.token_list_url)
                resp.raise_for_status()
                tokens_data = resp.json()
            except httpx.HTTPError:
                if not self._cache_loaded:
                    raise
                return

            self._by_mint.clear()
            self._symbol_index.clear()
            for item in tokens_data:
                token = JupiterToken.from_api(item)
                if not token.address:
                    continue
                self._by_mint[token.address] = token
                self._symbol_index.setdefault(token.symbol.lower(), []).append(token)

            self._cache_loaded = True
            self._last_refresh = now

    async def get_token_by_mint(self, mint_address: str) -> Optional[JupiterToken]:
        await self._ensure_cache()
        return self._by_mint.get(mint_address)

    async def resolve_symbol(self, symbol: str) -> Optional[JupiterToken]:
        """Resolve a ticker (case-insensitive) or a mint address to a token.

        Exact symbol matches only; verified tokens first.
        """
        await self._ensure_cache()
        candidate = symbol.strip()
        if candidate in self._by_mint:
            return self._by_mint[candidate]

        key = candidate.lower().lstrip("$")
        well_known = WELL_KNOWN_MINTS.get(key)
        if well_known and well_known in self._by_mint:
            return self._by_mint[well_known]

        matches = self._symbol_index.get(key, [])
        if not matches:
            return None
        return sorted(matches, key=lambda t: ("verified" not in t.tags, len(t.name)))[0]

    async def get_token_price(self, mint_address: str) -> Optional[float]:
        """Current USD price, or None when Jupiter has no price for the mint."""
        client = await self._get_client()
        resp = await client.get(self.price_url, params={"ids": mint_address})
        resp.raise_for_status()
        entry = (resp.json().get("data") or {}).get(mint_address) or {}
        price = entry.get("price")
        if price in (None, ""):
            return None
        return float(price)


# =============================================================================
# Swap Quote and Transaction Building
# =============================================================================

@dataclass
class JupiterQuote:
    """Quote response from Jupiter."""
    input_mint: str
    output_mint: str
    in_amount: int                  # smallest units
    out_amount: int                 # smallest units
    other_amount_threshold: int     # minimum output after slippage
    slippage_bps: int
    price_impact_pct: float
    route_labels: List[str]
    quote_response: Dict[str, Any]
    fetched_at: float = field(default_factory=time.monotonic)

    @property
    def is_valid(self) -> bool:
        """Quotes are honoured for about 30 seconds."""
        return (time.monotonic() - self.fetched_at) < 30


class JupiterQuoteError(Exception):
    """Failed to get a quote from Jupiter."""


class JupiterSwapError(Exception):
    """Failed to build swap transaction."""


class JupiterSwapProvider(Provider):
    """
    Jupiter v6 swap API.

    Usage:
        quote = await provider.get_swap_quote(NATIVE_SOL_MINT, USDC_MINT, 1_000_000_000, 50)
        tx_base64 = await provider.build_swap_transaction(quote, user_public_key, 1000)
        # sign with the agent keypair, then hand to the transaction pipeline
    """

    name = "jupiter-swap"
    timeout_s = 30

    def __init__(self, quote_url: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.quote_url = quote_url.rstrip("/")

    async def ready(self) -> bool:
        return True

    async def get_swap_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 50,
    ) -> JupiterQuote:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": slippage_bps,
            "swapMode": "ExactIn",
        }
        client = await self._get_client()
        try:
            response = await client.get(f"{self.quote_url}/quote", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise JupiterQuoteError(f"HTTP error: {e.response.status_code}") from e

        if "error" in data:
            raise JupiterQuoteError(f"Jupiter quote error: {data['error']}")

        return JupiterQuote(
            input_mint=data["inputMint"],
            output_mint=data["outputMint"],
            in_amount=int(data["inAmount"]),
            out_amount=int(data["outAmount"]),
            other_amount_threshold=int(data.get("otherAmountThreshold", data["outAmount"])),
            slippage_bps=int(data.get("slippageBps", slippage_bps)),
            price_impact_pct=float(data.get("priceImpactPct") or 0),
            route_labels=[
                (step.get("swapInfo") or {}).get("label", "")
                for step in data.get("routePlan", [])
            ],
            quote_response=data,
        )

    async def build_swap_transaction(
        self,
        quote: JupiterQuote,
        user_public_key: str,
        compute_unit_price_micro_lamports: int = 0,
    ) -> str:
        """Build the unsigned swap transaction for ``quote`` (base64)."""
        if not quote.is_valid:
            raise JupiterSwapError("Quote has expired, please get a new quote")

        payload: Dict[str, Any] = {
            "quoteResponse": quote.quote_response,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if compute_unit_price_micro_lamports:
            payload["computeUnitPriceMicroLamports"] = compute_unit_price_micro_lamports

        client = await self._get_client()
        try:
            response = await client.post(f"{self.quote_url}/swap", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise JupiterSwapError(f"HTTP error: {e.response.status_code}") from e

        if "error" in data:
            raise JupiterSwapError(f"Jupiter swap error: {data['error']}")
        if not data.get("swapTransaction"):
            raise JupiterSwapError("Jupiter returned no swap transaction")
        return data["swapTransaction"]


__all__ = [
    "JupiterProvider",
    "JupiterToken",
    "JupiterSwapProvider",
    "JupiterQuote",
    "JupiterQuoteError",
    "JupiterSwapError",
    "NATIVE_SOL_MINT",
    "USDC_MINT",
    "USDT_MINT",
    "JUPSOL_MINT",
    "WELL_KNOWN_MINTS",
]
