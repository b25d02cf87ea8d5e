"""
Shared pieces of the enrichment services.

Every query returns an ``EnrichmentSnapshot``. A source with nothing to say
raises ``DataUnavailable``; services never substitute zeros.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from ...cache import TTLCache
from ...core.errors import DataUnavailable
from ...providers.jupiter import JupiterProvider

SNAPSHOT_VERSION = 1
TIMEFRAMES = ("1h", "24h", "7d", "30d")

_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def looks_like_address(value: str) -> bool:
    return bool(_ADDRESS_RE.match(value or ""))


def as_float(value: Any) -> Optional[float]:
    """Parse a numeric field, keeping absent values absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class EnrichmentSnapshot:
    source: str
    token: str
    data: Dict[str, Any]
    timeframe: Optional[str] = None
    version: int = SNAPSHOT_VERSION
    as_of: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source": self.source,
            "token": self.token,
            "timeframe": self.timeframe,
            "asOf": self.as_of.isoformat(),
            **self.data,
        }


class EnrichmentService:
    """Base for read-only, cached enrichment services."""

    name = "enrichment"

    def __init__(
        self,
        resolver: Optional[JupiterProvider] = None,
        cache_ttl_seconds: int = 60,
        cache_size: int = 512,
    ):
        self._resolver = resolver
        self._cache = TTLCache(default_ttl=cache_ttl_seconds, max_size=cache_size)

    async def resolve_address(self, token: str) -> str:
        """Mint address for a ticker or address."""
        token = (token or "").strip()
        if looks_like_address(token):
            return token
        if self._resolver is None:
            raise DataUnavailable(f"Cannot resolve token {token!r} without a token list", source=self.name)
        resolved = await self._resolver.resolve_symbol(token)
        if resolved is None:
            raise DataUnavailable(f"Unknown token: {token}", source=self.name)
        return resolved.address

    async def resolve_symbol(self, token: str) -> str:
        """Ticker for a ticker or address."""
        token = (token or "").strip()
        if not looks_like_address(token):
            return token.upper()
        resolved = await self._resolver.get_token_by_mint(token) if self._resolver else None
        if resolved is None:
            raise DataUnavailable(f"No ticker known for {token}", source=self.name)
        return resolved.symbol.upper()

    async def _cached(
        self,
        key: str,
        loader: Callable[[], Awaitable[EnrichmentSnapshot]],
    ) -> EnrichmentSnapshot:
        return await self._cache.get_or_load(f"{self.name}:{key}", loader)
