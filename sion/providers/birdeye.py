"""
Birdeye API Provider

Token overview, recent swaps and OHLCV history for Solana tokens, plus the
websocket endpoint used by the live price feed.

Docs: https://docs.birdeye.so/reference
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from .base import Provider
from ..core.errors import DataUnavailable

logger = logging.getLogger(__name__)

OHLCV_INTERVALS = {"1h": "1m", "24h": "15m", "7d": "1H", "30d": "4H"}
TIMEFRAME_SECONDS = {"1h": 3600, "24h": 86400, "7d": 7 * 86400, "30d": 30 * 86400}


class BirdeyeProvider(Provider):
    """Birdeye REST provider for Solana market data."""

    name = "birdeye"
    timeout_s = 30

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://public-api.birdeye.so",
        ws_url: str = "wss://public-api.birdeye.so/socket/solana",
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(client)
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.ws_url = ws_url

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "x-chain": "solana"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    async def ready(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, params: Dict[str, Any]) -> Any:
        if not self.api_key:
            raise DataUnavailable("Birdeye API key not configured", source=self.name)

        client = await self._get_client()
        response = await client.get(f"{self.base_url}{path}", params=params, headers=self._build_headers())
        response.raise_for_status()
        data = response.json()

        if not data.get("success", False) or data.get("data") in (None, {}, []):
            logger.warning("Birdeye %s returned no data: %s", path, data.get("message"))
            raise DataUnavailable(f"Birdeye has no data for {params.get('address')}", source=self.name)
        return data["data"]

    async def get_token_overview(self, address: str) -> Dict[str, Any]:
        return await self._get("/defi/token_overview", {"address": address})

    async def get_recent_trades(self, address: str, limit: int = 50) -> List[Dict[str, Any]]:
        data = await self._get(
            "/defi/txs/token",
            {"address": address, "tx_type": "swap", "limit": min(limit, 50), "offset": 0},
        )
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            raise DataUnavailable(f"Birdeye has no trades for {address}", source=self.name)
        return items

    async def get_ohlcv(self, address: str, timeframe: str = "24h") -> List[Dict[str, Any]]:
        """Candles covering ``timeframe`` at a resolution suited to it."""
        window = TIMEFRAME_SECONDS.get(timeframe, TIMEFRAME_SECONDS["24h"])
        now = int(time.time())
        data = await self._get(
            "/defi/ohlcv",
            {
                "address": address,
                "type": OHLCV_INTERVALS.get(timeframe, "15m"),
                "time_from": now - window,
                "time_to": now,
            },
        )
        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            raise DataUnavailable(f"Birdeye has no price history for {address}", source=self.name)
        return items

    def socket_url(self) -> str:
        return f"{self.ws_url}?x-api-key={self.api_key}"
