import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..dependencies import AppServices, get_services
from ..services import MarketUpdateHub

router = APIRouter()


async def _relay(hub: MarketUpdateHub) -> AsyncIterator[str]:
    for update in hub.latest():
        yield f"data: {json.dumps(update.to_dict())}\n\n"
    async for update in hub.listen():
        yield f"data: {json.dumps(update.to_dict())}\n\n"


@router.get("/market/latest")
async def latest_prices(services: AppServices = Depends(get_services)):
    return [update.to_dict() for update in services.hub.latest()]


@router.get("/market/stream")
async def market_stream(services: AppServices = Depends(get_services)) -> StreamingResponse:
    """Live price updates as Server-Sent Events."""
    return StreamingResponse(
        _relay(services.hub),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
