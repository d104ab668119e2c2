"""
The Mongo repositories themselves, run against mongomock-motor so the query
documents (conditional status writes, pair upsert, counters) are exercised.
"""
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository


ALICE, BOB, CAROL = str(ObjectId()), str(ObjectId()), str(ObjectId())
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    return AsyncMongoMockClient()["chatcore_test"]


@pytest.fixture
def conversation_repo(db) -> ConversationRepository:
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db) -> MessageRepository:
    return MessageRepository(db)


def message_doc(conversation_id: str, content: str, created_at: datetime = T0, status: str = "sent") -> dict:
    return {
        "conversation_id": conversation_id,
        "sender_id": ALICE,
        "receiver_id": BOB,
        "content": content,
        "content_type": "text",
        "image_or_video_url": None,
        "message_status": status,
        "reactions": [],
        "created_at": created_at,
        "updated_at": created_at,
    }


@pytest.mark.asyncio
async def test_conversation_found_by_either_participant_order(db, conversation_repo):
    await conversation_repo.ensure_indexes()
    first = await conversation_repo.get_or_create_one_to_one(ALICE, BOB)
    second = await conversation_repo.get_or_create_one_to_one(BOB, ALICE)

    assert first["_id"] == second["_id"]
    assert first["participants"] == sorted([ALICE, BOB])
    assert first["unread_counters"] == {ALICE: 0, BOB: 0}
    assert await db["conversations"].count_documents({}) == 1

    other = await conversation_repo.get_or_create_one_to_one(ALICE, CAROL)
    assert other["_id"] != first["_id"]


@pytest.mark.asyncio
async def test_unread_counters_move_per_user(conversation_repo):
    convo = await conversation_repo.get_or_create_one_to_one(ALICE, BOB)
    message_id = str(ObjectId())

    await conversation_repo.update_on_new_message(convo["_id"], message_id, "hi", BOB)
    await conversation_repo.update_on_new_message(convo["_id"], message_id, "hi again", BOB)
    await conversation_repo.update_on_new_message(convo["_id"], message_id, "back", ALICE)
    await conversation_repo.reset_unread(convo["_id"], ALICE)

    stored = await conversation_repo.get_by_id(convo["_id"])
    assert stored["unread_counters"] == {ALICE: 0, BOB: 2}
    assert stored["last_message_preview"] == "back"
    assert stored["last_message_id"] == message_id


@pytest.mark.asyncio
async def test_unknown_conversation(conversation_repo):
    assert await conversation_repo.get_by_id(str(ObjectId())) is None


@pytest.mark.asyncio
async def test_status_only_moves_forward(message_repo):
    message = await message_repo.create(message_doc("c", "once"))

    assert await message_repo.advance_status([message["_id"]], "delivered") == 1
    assert await message_repo.advance_status([message["_id"]], "read") == 1
    assert await message_repo.advance_status([message["_id"]], "delivered") == 0
    assert await message_repo.advance_status([message["_id"]], "read") == 0
    assert (await message_repo.get_by_id(message["_id"]))["message_status"] == "read"


@pytest.mark.asyncio
async def test_bulk_read_counts_only_real_transitions(message_repo):
    fresh = await message_repo.create(message_doc("c", "fresh"))
    seen = await message_repo.create(message_doc("c", "seen", status="read"))

    assert await message_repo.advance_status([fresh["_id"], seen["_id"]], "read") == 1
    assert await message_repo.advance_status([], "read") == 0


@pytest.mark.asyncio
async def test_history_is_chronological_and_scoped(message_repo):
    await message_repo.ensure_indexes()
    later = await message_repo.create(message_doc("c1", "later", T0 + timedelta(minutes=5)))
    earlier = await message_repo.create(message_doc("c1", "earlier", T0))
    await message_repo.create(message_doc("c2", "elsewhere", T0))

    history = await message_repo.list_by_conversation("c1")
    assert [m["_id"] for m in history] == [earlier["_id"], later["_id"]]
    assert all(isinstance(m["_id"], str) for m in history)

    found = await message_repo.get_many([later["_id"], str(ObjectId())])
    assert [m["_id"] for m in found] == [later["_id"]]


@pytest.mark.asyncio
async def test_reactions_and_delete(message_repo):
    message = await message_repo.create(message_doc("c", "react"))

    assert await message_repo.set_reactions(message["_id"], [{"user_id": BOB, "emoji": "👍"}]) is True
    assert (await message_repo.get_by_id(message["_id"]))["reactions"] == [{"user_id": BOB, "emoji": "👍"}]

    assert await message_repo.delete(message["_id"]) is True
    assert await message_repo.delete(message["_id"]) is False
    assert await message_repo.set_reactions(message["_id"], []) is False
    assert await message_repo.get_by_id(message["_id"]) is None


@pytest.mark.asyncio
async def test_presence_fields(db):
    users = UserRepository(db)
    result = await db["users"].insert_one({"username": "alice", "is_online": False, "last_seen": None})
    user_id = str(result.inserted_id)
    await db["users"].insert_one({"username": "stale", "is_online": True, "last_seen": None})

    assert await users.set_presence(user_id, True, T0) is True
    assert (await users.get_user_by_id(user_id))["is_online"] is True
    assert await users.set_presence(str(ObjectId()), True, T0) is False

    assert await users.mark_all_offline() == 2
    assert await db["users"].count_documents({"is_online": True}) == 0
