from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx


class Provider(ABC):
    """Base interface for HTTP-backed data providers.

    Providers own a lazily created ``httpx.AsyncClient``; tests inject a
    client built on ``httpx.MockTransport`` instead.
    """

    name: str
    timeout_s: float = 10

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, headers=self._build_headers())
            self._owns_client = True
        return self._client

    def _build_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        if self._owns_client:
            self._client = None

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        if not await self.ready():
            return {"status": "unavailable", "reason": f"{self.name} not configured"}
        return {"status": "configured"}
