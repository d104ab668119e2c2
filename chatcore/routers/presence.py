from typing import Any

from fastapi import APIRouter, Depends

from chatcore.services.coordinator import ChatCoordinator
from chatcore.utils.dependencies import get_coordinator, get_current_user_id


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}")
async def presence(user_id: str, _: str = Depends(get_current_user_id), coordinator: ChatCoordinator = Depends(get_coordinator)) -> Any:
    """
    Online status straight from the in-memory registry; last_seen comes from
    the users collection when the user is offline.
    """
    status = await coordinator.presence.is_online(user_id)
    return status.to_wire()
