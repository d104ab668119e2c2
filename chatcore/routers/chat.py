import asyncio
import json
import logging
from typing import Any, Set

import jwt
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError as PydanticValidationError

from chatcore.realtime.connection_registry import Session
from chatcore.schemas.chat import MarkReadRequest, MessagePublic, ReactionRequest, SendMessageRequest
from chatcore.schemas.events import (
    AddReactionFrame,
    CloseConversationFrame,
    ErrorEvent,
    MessageReadFrame,
    TypingFrame,
    UserStatusEvent,
    UserStatusQueryFrame,
    inbound_frame_adapter,
)
from chatcore.services.coordinator import ChatCoordinator
from chatcore.utils.dependencies import get_coordinator, get_current_user_id
from chatcore.utils.errors import ChatError, NotFoundError
from chatcore.utils.security import decode_access_token


logger = logging.getLogger("chatcore.routers.chat")

router = APIRouter(prefix="/messages", tags=["chat"])

# teardowns still running after their endpoint task was cancelled
_teardowns: Set[asyncio.Task] = set()


@router.websocket("/ws/chat/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str):
    coordinator: ChatCoordinator = websocket.app.state.coordinator
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        payload = decode_access_token(token)
    except jwt.PyJWTError:
        await websocket.close(code=4401)
        return
    if payload.get("sub") != user_id:
        await websocket.close(code=4403)
        return

    await websocket.accept()
    try:
        session = await coordinator.presence.connect(user_id, websocket)
    except NotFoundError:
        await websocket.close(code=4404)
        return
    except ChatError as exc:
        logger.error(f"Rejected connection for user {user_id}: {exc.message}")
        await websocket.close(code=1011)
        return

    try:
        while True:
            data = await websocket.receive_text()
            await handle_frame(coordinator, session, data)
    except WebSocketDisconnect:
        pass
    finally:
        await release_session(coordinator, session)


async def release_session(coordinator: ChatCoordinator, session: Session) -> None:
    """
    Tear down a finished socket's session.

    The server cancels the endpoint task when the transport goes away, so the
    teardown runs shielded and always reaches the offline write and broadcast.
    """
    task = asyncio.ensure_future(_disconnect(coordinator, session.user_id, session.connection_id))
    _teardowns.add(task)
    task.add_done_callback(_teardowns.discard)
    await asyncio.shield(task)


async def _disconnect(coordinator: ChatCoordinator, user_id: str, connection_id: str) -> None:
    try:
        await coordinator.presence.disconnect(user_id, connection_id)
    except ChatError as exc:
        logger.error(f"Disconnect cleanup failed for user {user_id}: {exc.message}")


async def handle_frame(coordinator: ChatCoordinator, session: Session, data: str) -> None:
    """Apply one inbound frame; failures are reported to this socket only."""
    user_id = session.user_id
    try:
        frame = inbound_frame_adapter.validate_python(json.loads(data))
    except (ValueError, PydanticValidationError) as exc:
        logger.debug(f"Invalid frame from user {user_id}: {exc}")
        session.push(ErrorEvent(message="Invalid message payload").to_wire())
        return

    try:
        if isinstance(frame, TypingFrame):
            if frame.type == "typing_start":
                await coordinator.typing.start(user_id, frame.conversation_id, frame.receiver_id)
            else:
                await coordinator.typing.stop(user_id, frame.conversation_id, frame.receiver_id)
        elif isinstance(frame, CloseConversationFrame):
            await coordinator.typing.clear(user_id, frame.conversation_id)
        elif isinstance(frame, MessageReadFrame):
            await coordinator.chat.mark_read(frame.message_ids, user_id)
        elif isinstance(frame, AddReactionFrame):
            await coordinator.reactions.react(frame.message_id, user_id, frame.emoji)
        elif isinstance(frame, UserStatusQueryFrame):
            presence = await coordinator.presence.is_online(frame.user_id)
            session.push(UserStatusEvent(**presence.model_dump()).to_wire())
    except ChatError as exc:
        session.push(ErrorEvent(message=exc.message).to_wire())


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(body: SendMessageRequest, user_id: str = Depends(get_current_user_id), coordinator: ChatCoordinator = Depends(get_coordinator)) -> Any:
    message = await coordinator.chat.send_message(
        user_id,
        body.receiver_id,
        content=body.content,
        content_type=body.content_type,
        image_or_video_url=body.image_or_video_url,
    )
    return MessagePublic.from_document(message).to_wire()


@router.put("/read")
async def mark_read(body: MarkReadRequest, user_id: str = Depends(get_current_user_id), coordinator: ChatCoordinator = Depends(get_coordinator)) -> Any:
    messages = await coordinator.chat.mark_read(body.message_ids, user_id)
    return {"items": [MessagePublic.from_document(m).to_wire() for m in messages]}


@router.delete("/{message_id}")
async def delete_message(message_id: str, user_id: str = Depends(get_current_user_id), coordinator: ChatCoordinator = Depends(get_coordinator)) -> Any:
    await coordinator.chat.delete_message(message_id, user_id)
    return {"msg": "Message deleted", "messageId": message_id}


@router.post("/{message_id}/reactions")
async def react(message_id: str, body: ReactionRequest, user_id: str = Depends(get_current_user_id), coordinator: ChatCoordinator = Depends(get_coordinator)) -> Any:
    reactions = await coordinator.reactions.react(message_id, user_id, body.emoji)
    return {
        "messageId": message_id,
        "reactions": [{"userId": r["user_id"], "emoji": r["emoji"]} for r in reactions],
    }
