import logging
from typing import Dict, List, Optional

from pymongo.errors import PyMongoError

from chatcore.realtime.notifier import Notifier
from chatcore.repositories.message_repository import MessageRepository
from chatcore.schemas.chat import ReactionPublic
from chatcore.schemas.events import ReactionUpdateEvent
from chatcore.utils.errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from chatcore.utils.keyed_lock import KeyedLock
from chatcore.utils.validation import ensure_object_id


logger = logging.getLogger("chatcore.services.reactions")


def toggle_reaction(reactions: List[Dict[str, str]], user_id: str, emoji: str) -> List[Dict[str, str]]:
    """
    A user holds at most one reaction per message: same emoji removes it,
    a different emoji replaces it in place, otherwise it is appended.
    """
    updated = [dict(r) for r in reactions]
    for index, reaction in enumerate(updated):
        if reaction["user_id"] == user_id:
            if reaction["emoji"] == emoji:
                del updated[index]
            else:
                reaction["emoji"] = emoji
            return updated
    updated.append({"user_id": user_id, "emoji": emoji})
    return updated


class ReactionService:

    def __init__(self, message_repo: MessageRepository, notifier: Notifier, message_locks: Optional[KeyedLock] = None) -> None:
        self._message_repo = message_repo
        self._notifier = notifier
        self._locks = message_locks or KeyedLock()

    async def react(self, message_id: str, user_id: str, emoji: str) -> List[Dict[str, str]]:
        ensure_object_id(message_id, "message id")
        ensure_object_id(user_id, "user id")
        emoji = (emoji or "").strip()
        if not emoji:
            raise ValidationError("Emoji is required")

        # read-modify-write of one message's reactions is single-writer
        async with self._locks.hold(message_id):
            try:
                message = await self._message_repo.get_by_id(message_id)
            except PyMongoError as exc:
                raise PersistenceError("Could not load message") from exc
            if not message:
                raise NotFoundError(f"Message {message_id} not found")
            if user_id not in (message["sender_id"], message["receiver_id"]):
                raise AuthorizationError("Only conversation participants can react to this message")

            reactions = toggle_reaction(message.get("reactions", []), user_id, emoji)
            try:
                await self._message_repo.set_reactions(message_id, reactions)
            except PyMongoError as exc:
                logger.error(f"Failed to save reactions for message {message_id}: {exc}")
                raise PersistenceError("Could not save reaction") from exc

        event = ReactionUpdateEvent(
            message_id=message_id,
            reactions=[ReactionPublic(user_id=r["user_id"], emoji=r["emoji"]) for r in reactions],
        )
        for participant in {message["sender_id"], message["receiver_id"]}:
            self._notifier.send(participant, event)
        return reactions
