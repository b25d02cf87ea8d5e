"""
LunarCrush API provider.

Social metrics (mentions, engagement, sentiment, galaxy score) per coin.
"""

from typing import Any, Dict, Optional

import httpx

from .base import Provider
from ..core.errors import DataUnavailable


class LunarCrushProvider(Provider):
    name = "lunarcrush"
    timeout_s = 20

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://lunarcrush.com/api4/public",
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(client)
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")

    def _build_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def ready(self) -> bool:
        return bool(self.api_key)

    async def get_coin(self, symbol: str) -> Dict[str, Any]:
        """Current social snapshot for a coin symbol or id."""
        if not self.api_key:
            raise DataUnavailable("LunarCrush API key not configured", source=self.name)

        client = await self._get_client()
        response = await client.get(
            f"{self.base_url}/coins/{symbol.lower()}/v1",
            headers=self._build_headers(),
        )
        if response.status_code == 404:
            raise DataUnavailable(f"LunarCrush does not track {symbol}", source=self.name)
        response.raise_for_status()
        data = response.json().get("data")
        if not data:
            raise DataUnavailable(f"LunarCrush has no data for {symbol}", source=self.name)
        return data
