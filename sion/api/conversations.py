from typing import List

from fastapi import APIRouter, Depends

from ..auth import Actor, require_actor
from ..dependencies import AppServices, get_services
from ..types import Conversation, ConversationSummary

router = APIRouter()


@router.get("/conversations", response_model=List[ConversationSummary], response_model_by_alias=True)
async def list_conversations(
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
):
    return await services.chat.list_conversations(actor)


@router.get("/conversations/{conversation_id}", response_model=Conversation, response_model_by_alias=True)
async def get_conversation(
    conversation_id: str,
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
):
    return await services.chat.get_conversation(conversation_id, actor)


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
):
    await services.chat.delete_conversation(conversation_id, actor)
    return {"id": conversation_id, "deleted": True}
