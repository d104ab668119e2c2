from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("updated_at", DESCENDING)])

    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> Dict[str, Any]:
        participants = sorted([user_a, user_b])
        now = datetime.now(timezone.utc)
        doc = await self.collection.find_one_and_update(
            {"participants": participants},
            {
                "$setOnInsert": {
                    "last_message_id": None,
                    "last_message_preview": None,
                    "unread_counters": {user_a: 0, user_b: 0},
                    "created_at": now,
                    "updated_at": now,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        doc["_id"] = str(doc["_id"])
        return doc

    async def get_by_id(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"_id": ObjectId(conversation_id)})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def update_on_new_message(self, conversation_id: str, message_id: str, preview: Optional[str], receiver_id: str) -> None:
        await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {
                "$set": {
                    "last_message_id": message_id,
                    "last_message_preview": preview,
                    "updated_at": datetime.now(timezone.utc),
                },
                "$inc": {f"unread_counters.{receiver_id}": 1},
            },
        )

    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {"$set": {f"unread_counters.{user_id}": 0}},
        )
