"""
Solana JSON-RPC client.

Thin async wrapper over the RPC methods the transaction pipeline needs:
simulation, submission, signature status polling and the reads used while
building transactions. Read calls retry transport failures; ``sendTransaction``
is attempted once.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: str = "confirmed"
    max_retries: int = 3
    timeout_s: float = 30.0


@dataclass
class RpcSimulation:
    """Outcome of ``simulateTransaction``."""
    err: Optional[Any]
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.err is None


@dataclass
class SignatureStatus:
    """One entry of ``getSignatureStatuses``."""
    slot: Optional[int]
    confirmations: Optional[int]  # None once the block is rooted
    err: Optional[Any]
    confirmation_status: Optional[str]  # processed, confirmed, finalized

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "SignatureStatus":
        return cls(
            slot=data.get("slot"),
            confirmations=data.get("confirmations"),
            err=data.get("err"),
            confirmation_status=data.get("confirmationStatus"),
        )


class SolanaRpcError(Exception):
    """Error returned by the RPC node or the transport to it."""

    def __init__(self, message: str, rpc_code: Optional[int] = None, data: Optional[Any] = None):
        super().__init__(message)
        self.rpc_code = rpc_code
        self.data = data


class SolanaRpc:
    """
    Async Solana RPC client.

    Usage:
        rpc = SolanaRpc(SolanaRpcConfig(rpc_url="https://api.mainnet-beta.solana.com"))
        simulation = await rpc.simulate_transaction(signed_tx_base64)
        signature = await rpc.send_transaction(signed_tx_base64)
        statuses = await rpc.get_signature_statuses([signature])
    """

    def __init__(self, config: SolanaRpcConfig, client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    @property
    def commitment(self) -> str:
        return self._config.commitment

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(
        self,
        method: str,
        params: List[Any],
        retry: bool = True,
    ) -> Any:
        """Make an RPC call and return its ``result`` member."""
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        attempts = self._config.max_retries if retry else 1

        for attempt in range(attempts):
            try:
                response = await client.post(
                    self._config.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()
            except ValueError as e:
                raise SolanaRpcError(f"Malformed response calling {method}: {e}") from e
            except httpx.HTTPStatusError as e:
                if attempt == attempts - 1 or (e.response.status_code < 500 and e.response.status_code != 429):
                    raise SolanaRpcError(f"HTTP error {e.response.status_code} calling {method}") from e
                await asyncio.sleep(0.5 * (attempt + 1))
                continue
            except httpx.TransportError as e:
                if attempt == attempts - 1:
                    raise SolanaRpcError(f"Transport error calling {method}: {e}") from e
                await asyncio.sleep(0.5 * (attempt + 1))
                continue

            if not isinstance(data, dict):
                raise SolanaRpcError(f"Malformed response calling {method}: expected a JSON object")
            if "error" in data:
                error = data["error"] or {}
                raise SolanaRpcError(
                    f"RPC error: {error.get('message', error)}",
                    rpc_code=error.get("code"),
                    data=error.get("data"),
                )
            return data.get("result")

        raise SolanaRpcError(f"Max retries exceeded calling {method}")

    async def simulate_transaction(self, transaction: str) -> RpcSimulation:
        """
        Simulate a signed, base64 encoded transaction without sending it.

        The blockhash is replaced so a slightly stale transaction still
        simulates against current state.
        """
        options = {
            "encoding": "base64",
            "commitment": self._config.commitment,
            "replaceRecentBlockhash": True,
            "sigVerify": False,
        }
        result = await self._rpc_call("simulateTransaction", [transaction, options])
        value = (result or {}).get("value") or {}
        return RpcSimulation(
            err=value.get("err"),
            logs=list(value.get("logs") or []),
            units_consumed=value.get("unitsConsumed"),
        )

    async def send_transaction(self, transaction: str) -> str:
        """
        Submit a signed, base64 encoded transaction through the public RPC.

        Preflight is skipped because the pipeline already simulated it.
        Returns the transaction signature.
        """
        options = {
            "encoding": "base64",
            "skipPreflight": True,
            "preflightCommitment": self._config.commitment,
            "maxRetries": 0,
        }
        signature = await self._rpc_call("sendTransaction", [transaction, options], retry=False)
        if not signature:
            raise SolanaRpcError("No signature returned from sendTransaction")
        return signature

    async def get_signature_statuses(self, signatures: List[str]) -> List[Optional[SignatureStatus]]:
        """Look up statuses, searching history so old signatures still resolve."""
        result = await self._rpc_call(
            "getSignatureStatuses",
            [signatures, {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or []
        return [SignatureStatus.from_rpc(v) if v else None for v in values]

    async def get_latest_blockhash(self) -> Dict[str, Any]:
        """Return ``{"blockhash", "lastValidBlockHeight"}``."""
        result = await self._rpc_call(
            "getLatestBlockhash",
            [{"commitment": self._config.commitment}],
        )
        value = (result or {}).get("value") or {}
        if not value.get("blockhash"):
            raise SolanaRpcError("getLatestBlockhash returned no blockhash")
        return {
            "blockhash": value["blockhash"],
            "lastValidBlockHeight": value.get("lastValidBlockHeight"),
        }

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        result = await self._rpc_call("getMinimumBalanceForRentExemption", [size])
        return int(result)

    async def health_check(self) -> Dict[str, Any]:
        try:
            result = await self._rpc_call("getHealth", [], retry=False)
            return {"status": "healthy" if result == "ok" else "degraded", "result": result}
        except SolanaRpcError as e:
            return {"status": "error", "reason": str(e)}
