from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # always the sorted pair of user ids
    participants: List[str]
    last_message_id: Optional[str]
    last_message_preview: Optional[str]
    # user id -> messages addressed to that user since they last opened the conversation
    unread_counters: Dict[str, int]
    created_at: datetime
    updated_at: datetime
