"""
WebSocket frame definitions.

Outbound events are what connected peers receive; inbound frames are what a
client may send over its socket. Both use camelCase keys on the wire.
"""
from typing import Annotated, List, Literal, Union

from pydantic import Field, TypeAdapter

from chatcore.models.message import MessageStatus
from chatcore.schemas.chat import CamelModel, MessagePublic, PresenceStatus, ReactionPublic


class UserStatusEvent(PresenceStatus):
    type: Literal["user_status"] = "user_status"


class UserTypingEvent(CamelModel):
    type: Literal["user_typing"] = "user_typing"
    user_id: str
    conversation_id: str
    is_typing: bool


class ReceiveMessageEvent(CamelModel):
    type: Literal["receive_message"] = "receive_message"
    message: MessagePublic


class MessageStatusUpdateEvent(CamelModel):
    type: Literal["message_status_update"] = "message_status_update"
    message_id: str
    message_status: MessageStatus


class ReactionUpdateEvent(CamelModel):
    type: Literal["reaction_update"] = "reaction_update"
    message_id: str
    reactions: List[ReactionPublic]


class MessageDeletedEvent(CamelModel):
    type: Literal["message_deleted"] = "message_deleted"
    message_id: str
    conversation_id: str


class ErrorEvent(CamelModel):
    type: Literal["error"] = "error"
    message: str


class TypingFrame(CamelModel):
    type: Literal["typing_start", "typing_stop"]
    conversation_id: str = Field(min_length=1)
    receiver_id: str = Field(min_length=1)


class CloseConversationFrame(CamelModel):
    type: Literal["close_conversation"]
    conversation_id: str = Field(min_length=1)


class MessageReadFrame(CamelModel):
    type: Literal["message_read"]
    message_ids: List[str] = Field(min_length=1)


class AddReactionFrame(CamelModel):
    type: Literal["add_reaction"]
    message_id: str = Field(min_length=1)
    emoji: str = Field(min_length=1, max_length=32)


class UserStatusQueryFrame(CamelModel):
    type: Literal["get_user_status"]
    user_id: str = Field(min_length=1)


InboundFrame = Annotated[
    Union[TypingFrame, CloseConversationFrame, MessageReadFrame, AddReactionFrame, UserStatusQueryFrame],
    Field(discriminator="type"),
]

inbound_frame_adapter = TypeAdapter(InboundFrame)
