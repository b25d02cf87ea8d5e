"""
PumpPortal / pump.fun provider.

Token launches upload metadata to pump.fun's IPFS endpoint and then ask
PumpPortal's local-trade API for an unsigned create transaction, which the
agent signs together with the fresh mint keypair.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .base import Provider

logger = logging.getLogger(__name__)


class PumpPortalError(Exception):
    """PumpPortal or pump.fun rejected a request."""


class PumpPortalProvider(Provider):
    name = "pumpportal"
    timeout_s = 30

    def __init__(
        self,
        api_url: str = "https://pumpportal.fun/api",
        ipfs_url: str = "https://pump.fun/api/ipfs",
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(client)
        self.api_url = api_url.rstrip("/")
        self.ipfs_url = ipfs_url

    async def ready(self) -> bool:
        return True

    async def upload_metadata(
        self,
        name: str,
        symbol: str,
        description: str,
        image_url: str,
        links: Optional[Dict[str, str]] = None,
    ) -> str:
        """Upload image and metadata, returning the metadata URI."""
        client = await self._get_client()
        image = await client.get(image_url)
        if image.status_code >= 400:
            raise PumpPortalError(f"Could not fetch token image ({image.status_code})")

        form: Dict[str, Any] = {
            "name": name,
            "symbol": symbol,
            "description": description,
            "showName": "true",
        }
        form.update(links or {})
        content_type = image.headers.get("content-type", "image/png")
        response = await client.post(
            self.ipfs_url,
            data=form,
            files={"file": ("image", image.content, content_type)},
        )
        if response.status_code >= 400:
            raise PumpPortalError(f"Metadata upload failed ({response.status_code})")
        uri = (response.json() or {}).get("metadataUri")
        if not uri:
            raise PumpPortalError("Metadata upload returned no URI")
        return uri

    async def build_create_transaction(
        self,
        public_key: str,
        mint_public_key: str,
        name: str,
        symbol: str,
        metadata_uri: str,
        dev_buy_sol: float,
        slippage_percent: int = 10,
        priority_fee_sol: float = 0.0,
    ) -> bytes:
        """Unsigned, serialized versioned transaction creating the token."""
        client = await self._get_client()
        payload = {
            "publicKey": public_key,
            "action": "create",
            "tokenMetadata": {"name": name, "symbol": symbol, "uri": metadata_uri},
            "mint": mint_public_key,
            "denominatedInSol": "true",
            "amount": dev_buy_sol,
            "slippage": slippage_percent,
            "priorityFee": priority_fee_sol,
            "pool": "pump",
        }
        response = await client.post(f"{self.api_url}/trade-local", json=payload)
        if response.status_code != 200:
            raise PumpPortalError(f"PumpPortal create failed ({response.status_code}): {response.text[:200]}")
        return response.content
