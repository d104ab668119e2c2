import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chatcore.config import get_settings


logger = logging.getLogger("chatcore.database")

_client: Optional[AsyncIOMotorClient] = None


async def connect_to_mongo() -> AsyncIOMotorDatabase:
    global _client
    settings = get_settings()
    if _client is None:
        _client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
        logger.info(f"Connected to MongoDB database {settings.MONGODB_DB}")
    return _client[settings.MONGODB_DB]


async def close_mongo_connection() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
        logger.info("Closed MongoDB connection")

