import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo.errors import PyMongoError

from chatcore.models.message import STATUS_ORDER
from chatcore.realtime.notifier import Notifier
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.schemas.chat import MessagePublic
from chatcore.schemas.events import MessageDeletedEvent, MessageStatusUpdateEvent, ReceiveMessageEvent
from chatcore.utils.errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from chatcore.utils.keyed_lock import KeyedLock
from chatcore.utils.validation import ensure_object_id, ensure_object_ids


logger = logging.getLogger("chatcore.services.chat")

CONTENT_TYPES = ("text", "image", "video")
PREVIEW_LENGTH = 200


def pair_key(user_a: str, user_b: str) -> Tuple[str, str]:
    first, second = sorted([user_a, user_b])
    return first, second


class ChatService:
    """
    Message delivery state machine: sent -> delivered -> read.

    Writes for one conversation (new messages and the read-on-open sweep) are
    serialized by a lock keyed on the participant pair, so a message that
    arrives while a conversation is being opened is never marked read by it.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        notifier: Notifier,
        conversation_locks: Optional[KeyedLock] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._notifier = notifier
        self._locks = conversation_locks or KeyedLock()

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: Optional[str] = None,
        content_type: str = "text",
        image_or_video_url: Optional[str] = None,
    ) -> Dict[str, Any]:
        ensure_object_id(sender_id, "sender id")
        ensure_object_id(receiver_id, "receiver id")
        if sender_id == receiver_id:
            raise ValidationError("Cannot send a message to yourself")
        if content_type not in CONTENT_TYPES:
            raise ValidationError(f"Unsupported content type: {content_type!r}")
        if content_type == "text":
            if not content or not content.strip():
                raise ValidationError("Message content is required")
            content = content.strip()
        elif not image_or_video_url:
            raise ValidationError(f"A media url is required for {content_type} messages")

        async with self._locks.hold(pair_key(sender_id, receiver_id)):
            try:
                convo = await self._conversation_repo.get_or_create_one_to_one(sender_id, receiver_id)
                now = datetime.now(timezone.utc)
                message = await self._message_repo.create({
                    "conversation_id": convo["_id"],
                    "sender_id": sender_id,
                    "receiver_id": receiver_id,
                    "content": content,
                    "content_type": content_type,
                    "image_or_video_url": image_or_video_url,
                    "message_status": "sent",
                    "reactions": [],
                    "created_at": now,
                    "updated_at": now,
                })
            except PyMongoError as exc:
                logger.error(f"Failed to persist message from {sender_id} to {receiver_id}: {exc}")
                raise PersistenceError("Could not save message") from exc

            preview = content[:PREVIEW_LENGTH] if content else f"[{content_type}]"
            try:
                await self._conversation_repo.update_on_new_message(convo["_id"], message["_id"], preview, receiver_id)
            except PyMongoError as exc:
                logger.error(f"Failed to update conversation {convo['_id']} for message {message['_id']}: {exc}")
                await self._discard(message["_id"])
                raise PersistenceError("Could not save message") from exc

        await self._deliver(message)
        return message

    async def _discard(self, message_id: str) -> None:
        # a message the conversation does not point at must not linger as "sent"
        try:
            await self._message_repo.delete(message_id)
        except PyMongoError as exc:
            logger.error(f"Could not remove orphaned message {message_id}: {exc}")

    async def _deliver(self, message: Dict[str, Any]) -> None:
        receiver_id = message["receiver_id"]
        if self._notifier.send(receiver_id, ReceiveMessageEvent(message=MessagePublic.from_document(message))):
            try:
                if await self._message_repo.advance_status([message["_id"]], "delivered"):
                    message["message_status"] = "delivered"
            except PyMongoError as exc:
                # message stays "sent"; the receiver reconciles on the next fetch
                logger.warning(f"Could not mark message {message['_id']} delivered: {exc}")

    async def mark_read(self, message_ids: Iterable[str], reader_id: str) -> List[Dict[str, Any]]:
        ids = ensure_object_ids(message_ids, "message ids")
        ensure_object_id(reader_id, "reader id")
        try:
            messages = await self._message_repo.get_many(ids)
        except PyMongoError as exc:
            raise PersistenceError("Could not load messages") from exc

        found = {m["_id"]: m for m in messages}
        missing = [mid for mid in ids if mid not in found]
        if missing:
            raise NotFoundError(f"Messages not found: {', '.join(missing)}")
        for message in messages:
            if message["receiver_id"] != reader_id:
                raise AuthorizationError(f"Not the receiver of message {message['_id']}")

        ordered = [found[mid] for mid in ids]
        await self._mark_read(ordered)
        return ordered

    async def open_conversation(self, conversation_id: str, user_id: str) -> List[Dict[str, Any]]:
        """Return the full history and mark everything addressed to user_id as read."""
        ensure_object_id(conversation_id, "conversation id")
        ensure_object_id(user_id, "user id")
        try:
            convo = await self._conversation_repo.get_by_id(conversation_id)
        except PyMongoError as exc:
            raise PersistenceError("Could not load conversation") from exc
        if not convo:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if user_id not in convo["participants"]:
            raise AuthorizationError("User is not a participant of this conversation")

        async with self._locks.hold(pair_key(*convo["participants"])):
            try:
                messages = await self._message_repo.list_by_conversation(conversation_id)
                unread = [m for m in messages if m["receiver_id"] == user_id]
                await self._mark_read(unread)
                await self._conversation_repo.reset_unread(conversation_id, user_id)
            except PyMongoError as exc:
                logger.error(f"Failed to open conversation {conversation_id}: {exc}")
                raise PersistenceError("Could not update conversation") from exc
        return messages

    async def _mark_read(self, messages: List[Dict[str, Any]]) -> None:
        """
        Advance each message to read with its own conditional write. Only the
        caller whose write moved a message notifies its sender, so a read that
        races another read of the same message is announced once.
        """
        pending = [m for m in messages if STATUS_ORDER[m["message_status"]] < STATUS_ORDER["read"]]
        transitioned: List[Dict[str, Any]] = []
        try:
            for message in pending:
                if await self._message_repo.advance_status([message["_id"]], "read"):
                    transitioned.append(message)
                message["message_status"] = "read"
        except PyMongoError as exc:
            raise PersistenceError("Could not mark messages as read") from exc
        finally:
            for message in transitioned:
                self._notifier.send(
                    message["sender_id"],
                    MessageStatusUpdateEvent(message_id=message["_id"], message_status="read"),
                )

    async def delete_message(self, message_id: str, user_id: str) -> Dict[str, Any]:
        ensure_object_id(message_id, "message id")
        try:
            message = await self._message_repo.get_by_id(message_id)
        except PyMongoError as exc:
            raise PersistenceError("Could not load message") from exc
        if not message:
            raise NotFoundError(f"Message {message_id} not found")
        if message["sender_id"] != user_id:
            raise AuthorizationError("Not authorized to delete message")

        try:
            deleted = await self._message_repo.delete(message_id)
        except PyMongoError as exc:
            raise PersistenceError("Could not delete message") from exc
        if not deleted:
            raise NotFoundError(f"Message {message_id} not found")

        self._notifier.send(
            message["receiver_id"],
            MessageDeletedEvent(message_id=message_id, conversation_id=message["conversation_id"]),
        )
        return message
