"""
Live price feed over Birdeye's websocket.

``PriceFeed.subscribe`` is an async iterator of price updates; leaving the
iteration closes the socket. ``PriceFeedPublisher`` runs one subscription in
the background and fans updates out through ``MarketUpdateHub`` so any number
of SSE clients can share it.
"""

import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceUpdate:
    address: str
    price: float
    unix_time: int
    symbol: Optional[str] = None
    volume: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "price": self.price,
            "volume": self.volume,
            "unixTime": self.unix_time,
        }


def parse_price_message(raw: Any) -> Optional[PriceUpdate]:
    """Turn one socket frame into an update; anything that is not price data is None."""
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid JSON received on price feed: %.100s", raw)
        return None
    if not isinstance(message, dict) or message.get("type") != "PRICE_DATA":
        return None
    data = message.get("data") or {}
    close = data.get("c")
    address = data.get("address")
    if close is None or not address:
        return None
    return PriceUpdate(
        address=address,
        price=float(close),
        unix_time=int(data.get("unixTime") or 0),
        symbol=data.get("symbol"),
        volume=float(data["v"]) if data.get("v") is not None else None,
    )


class PriceFeed:
    """Birdeye price socket with reconnect."""

    def __init__(
        self,
        api_key: str,
        ws_url: str = "wss://public-api.birdeye.so/socket/solana",
        chart_type: str = "1m",
        max_retry_delay: float = 60.0,
    ):
        self.api_key = api_key
        self.ws_url = ws_url
        self.chart_type = chart_type
        self.max_retry_delay = max_retry_delay

    @property
    def url(self) -> str:
        return f"{self.ws_url}?x-api-key={self.api_key}"

    def _subscribe_message(self, address: str) -> str:
        return json.dumps({
            "type": "SUBSCRIBE_PRICE",
            "data": {
                "queryType": "simple",
                "chartType": self.chart_type,
                "address": address,
                "currency": "usd",
            },
        })

    async def subscribe(self, addresses: List[str]) -> AsyncIterator[PriceUpdate]:
        if not self.api_key:
            raise RuntimeError("Birdeye API key not configured for the price feed")
        if not addresses:
            return

        retry_delay = 1.0
        while True:
            try:
                async with websockets.connect(self.url, subprotocols=["echo-protocol"]) as ws:
                    retry_delay = 1.0
                    for address in addresses:
                        await ws.send(self._subscribe_message(address))
                    logger.info("Price feed subscribed to %d tokens", len(addresses))

                    async for raw in ws:
                        update = parse_price_message(raw)
                        if update is not None:
                            yield update
            except ConnectionClosed as e:
                logger.warning("Price feed socket closed: %s", e)
            except OSError as e:
                logger.error("Price feed connection error: %s", e)

            logger.info("Reconnecting price feed in %.0fs", retry_delay)
            await asyncio.sleep(retry_delay)
            retry_delay = min(retry_delay * 2, self.max_retry_delay)


class MarketUpdateHub:
    """In-process fan-out of price updates to per-listener queues."""

    def __init__(self, max_queue_size: int = 100):
        self._listeners: Set[asyncio.Queue] = set()
        self._max_queue_size = max_queue_size
        self._latest: Dict[str, PriceUpdate] = {}

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def latest(self) -> List[PriceUpdate]:
        return list(self._latest.values())

    def publish(self, update: PriceUpdate) -> None:
        self._latest[update.address] = update
        for queue in list(self._listeners):
            if queue.full():
                # Slow listener; drop its oldest update.
                queue.get_nowait()
            queue.put_nowait(update)

    async def listen(self) -> AsyncIterator[PriceUpdate]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._listeners.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._listeners.discard(queue)


class PriceFeedPublisher:
    """Background task that relays one feed subscription into the hub."""

    def __init__(self, feed: PriceFeed, hub: MarketUpdateHub, addresses: List[str]):
        self.feed = feed
        self.hub = hub
        self.addresses = list(addresses)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="price-feed-publisher")
        logger.info("Price feed publisher started for %s", ", ".join(self.addresses))

    async def _run(self) -> None:
        updates = self.feed.subscribe(self.addresses)
        try:
            async for update in updates:
                self.hub.publish(update)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Price feed publisher stopped")
        finally:
            await updates.aclose()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Price feed publisher stopped")
