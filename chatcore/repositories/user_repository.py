from datetime import datetime
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_user_by_id(self, user_id: str) -> Optional[dict]:
        user = await self._collection.find_one({"_id": ObjectId(user_id)})
        if user:
            user["_id"] = str(user["_id"])
        return user

    async def set_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> bool:
        result = await self._collection.update_one(
            {"_id": ObjectId(user_id)},
            {"$set": {"is_online": is_online, "last_seen": last_seen}},
        )
        return bool(result.matched_count)

    async def mark_all_offline(self) -> int:
        result = await self._collection.update_many({"is_online": True}, {"$set": {"is_online": False}})
        return result.modified_count or 0
