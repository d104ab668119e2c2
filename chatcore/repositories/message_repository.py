from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from chatcore.models.message import STATUS_ORDER


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("message_status", ASCENDING)])

    async def create(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc = dict(doc)
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    async def get_by_id(self, message_id: str) -> Optional[Dict[str, Any]]:
        doc = await self.collection.find_one({"_id": ObjectId(message_id)})
        if doc:
            doc["_id"] = str(doc["_id"])
        return doc

    async def get_many(self, message_ids: Iterable[str]) -> List[Dict[str, Any]]:
        oids = [ObjectId(mid) for mid in message_ids]
        items = await self.collection.find({"_id": {"$in": oids}}).to_list(length=len(oids))
        for it in items:
            it["_id"] = str(it["_id"])
        return items

    async def list_by_conversation(self, conversation_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort(
            [("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        items = await cursor.to_list(length=None)
        for it in items:
            it["_id"] = str(it["_id"])
        return items

    async def advance_status(self, message_ids: Iterable[str], status: str) -> int:
        # only ever moves forward along sent -> delivered -> read
        earlier = [s for s, rank in STATUS_ORDER.items() if rank < STATUS_ORDER[status]]
        oids = [ObjectId(mid) for mid in message_ids]
        if not oids:
            return 0
        result = await self.collection.update_many(
            {"_id": {"$in": oids}, "message_status": {"$in": earlier}},
            {"$set": {"message_status": status, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count or 0

    async def set_reactions(self, message_id: str, reactions: List[Dict[str, str]]) -> bool:
        result = await self.collection.update_one(
            {"_id": ObjectId(message_id)},
            {"$set": {"reactions": reactions, "updated_at": datetime.now(timezone.utc)}},
        )
        return bool(result.matched_count)

    async def delete(self, message_id: str) -> bool:
        result = await self.collection.delete_one({"_id": ObjectId(message_id)})
        return bool(result.deleted_count)
