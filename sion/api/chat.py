from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from ..auth import Actor, require_actor
from ..dependencies import AppServices, get_services
from ..providers.llm import ModelUnavailableError
from ..types import ChatRequest

router = APIRouter()


@router.post("/chat")
async def chat_endpoint(
    request: ChatRequest,
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
) -> StreamingResponse:
    """Streaming chat endpoint compliant with Server-Sent Events."""
    try:
        turn = await services.chat.prepare_turn(request, actor)
    except ModelUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return StreamingResponse(
        services.chat.stream(turn),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.delete("/chat")
async def delete_chat(
    conversation_id: str = Query(..., alias="id"),
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
):
    await services.chat.delete_conversation(conversation_id, actor)
    return {"id": conversation_id, "deleted": True}
