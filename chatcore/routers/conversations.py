from typing import Any

from fastapi import APIRouter, Depends

from chatcore.schemas.chat import MessagePublic
from chatcore.services.coordinator import ChatCoordinator
from chatcore.utils.dependencies import get_coordinator, get_current_user_id


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("/{conversation_id}/messages")
async def open_conversation(conversation_id: str, user_id: str = Depends(get_current_user_id), coordinator: ChatCoordinator = Depends(get_coordinator)) -> Any:
    """Opening a conversation marks every message addressed to the caller as read."""
    messages = await coordinator.chat.open_conversation(conversation_id, user_id)
    return {"items": [MessagePublic.from_document(m).to_wire() for m in messages]}
