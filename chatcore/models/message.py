from datetime import datetime
from typing import List, Literal, Optional, TypedDict


ContentType = Literal["text", "image", "video"]
MessageStatus = Literal["sent", "delivered", "read"]

# position in the sent -> delivered -> read progression
STATUS_ORDER = {"sent": 0, "delivered": 1, "read": 2}


class ReactionDocument(TypedDict):
    user_id: str
    emoji: str


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: Optional[str]
    content_type: ContentType
    image_or_video_url: Optional[str]
    message_status: MessageStatus
    reactions: List[ReactionDocument]
    created_at: datetime
    updated_at: datetime
