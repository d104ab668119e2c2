from datetime import datetime
from typing import Optional, TypedDict


class UserDocument(TypedDict, total=False):

    _id: str
    username: Optional[str]
    is_online: bool
    last_seen: Optional[datetime]
