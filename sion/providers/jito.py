"""
Jito block engine relay.

Private submission sends a single transaction straight to the block engine
so it never touches the public mempool; bundles land atomically and in order
or not at all.
"""

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import Provider

logger = logging.getLogger(__name__)


class JitoError(Exception):
    """The block engine rejected a transaction or bundle."""


class JitoRelay(Provider):
    """JSON-RPC client for Jito's transactions and bundles endpoints."""

    name = "jito"
    timeout_s = 15
    MAX_BUNDLE_SIZE = 5

    def __init__(self, block_engine_url: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.block_engine_url = block_engine_url.rstrip("/")
        self._ids = itertools.count(1)

    async def ready(self) -> bool:
        return bool(self.block_engine_url)

    async def _call(self, path: str, method: str, params: List[Any]) -> Any:
        client = await self._get_client()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await client.post(f"{self.block_engine_url}{path}", json=payload)
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        except ValueError as e:
            raise JitoError(f"Jito {method} returned a malformed response: {e}") from e
        except httpx.HTTPStatusError as e:
            raise JitoError(f"Jito {method} HTTP error {e.response.status_code}") from e
        except httpx.TransportError as e:
            raise JitoError(f"Jito {method} transport error: {e}") from e

        if not isinstance(data, dict):
            raise JitoError(f"Jito {method} returned a malformed response")
        if data.get("error"):
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise JitoError(f"Jito {method} rejected: {message}")
        return data.get("result")

    async def send_transaction(self, transaction: str) -> str:
        """Privately submit one base64 transaction. Returns its signature."""
        result = await self._call(
            "/api/v1/transactions",
            "sendTransaction",
            [transaction, {"encoding": "base64"}],
        )
        if not result:
            raise JitoError("Jito sendTransaction returned no signature")
        return result

    async def send_bundle(self, transactions: List[str]) -> str:
        """Submit base64 transactions as one atomic bundle. Returns the bundle id."""
        if not transactions:
            raise JitoError("Cannot send an empty bundle")
        if len(transactions) > self.MAX_BUNDLE_SIZE:
            raise JitoError(f"Bundles are limited to {self.MAX_BUNDLE_SIZE} transactions")
        result = await self._call(
            "/api/v1/bundles",
            "sendBundle",
            [transactions, {"encoding": "base64"}],
        )
        if not result:
            raise JitoError("Jito sendBundle returned no bundle id")
        logger.info("Jito bundle %s accepted with %d transaction(s)", result, len(transactions))
        return result
