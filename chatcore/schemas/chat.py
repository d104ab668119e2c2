from datetime import datetime
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatcore.models.message import ContentType, MessageStatus


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ReactionPublic(CamelModel):

    user_id: str
    emoji: str


class MessagePublic(CamelModel):

    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: Optional[str] = None
    content_type: ContentType = "text"
    image_or_video_url: Optional[str] = None
    message_status: MessageStatus = "sent"
    reactions: List[ReactionPublic] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "MessagePublic":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=str(doc["sender_id"]),
            receiver_id=str(doc["receiver_id"]),
            content=doc.get("content"),
            content_type=doc.get("content_type", "text"),
            image_or_video_url=doc.get("image_or_video_url"),
            message_status=doc.get("message_status", "sent"),
            reactions=[ReactionPublic(user_id=str(r["user_id"]), emoji=r["emoji"]) for r in doc.get("reactions", [])],
            created_at=doc.get("created_at"),
        )


class PresenceStatus(CamelModel):

    user_id: str
    is_online: bool
    last_seen: Optional[datetime] = None


class SendMessageRequest(CamelModel):

    receiver_id: str = Field(min_length=1)
    content: Optional[str] = None
    content_type: ContentType = "text"
    image_or_video_url: Optional[str] = None


class MarkReadRequest(CamelModel):

    message_ids: List[str] = Field(min_length=1)


class ReactionRequest(CamelModel):

    emoji: str = Field(min_length=1, max_length=32)
