"""
Typing indicators with auto-expiry.

Each (user_id, conversation_id) pair is either absent (idle) or holds a
TypingState. A TypingState owns exactly one pending expiry task; a refresh
cancels it and schedules a new one. An expiry only acts if its state is still
the current one for the key, so a timer that lost a race with an explicit stop
or a refresh does nothing.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

from chatcore.realtime.notifier import Notifier
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.schemas.events import UserTypingEvent
from chatcore.utils.errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from chatcore.utils.keyed_lock import KeyedLock
from chatcore.utils.validation import ensure_object_id


logger = logging.getLogger("chatcore.realtime.typing")

TypingKey = Tuple[str, str]


@dataclass(eq=False)
class TypingState:
    receiver_id: str
    expires_at: datetime
    timer: Optional[asyncio.Task] = field(default=None, repr=False)


class TypingCoordinator:

    def __init__(self, notifier: Notifier, conversation_repo: ConversationRepository, timeout_seconds: float = 3.0) -> None:
        self._notifier = notifier
        self._conversation_repo = conversation_repo
        self._timeout = timeout_seconds
        self._states: Dict[TypingKey, TypingState] = {}
        self._locks = KeyedLock()

    @property
    def timeout(self) -> float:
        return self._timeout

    def is_typing(self, user_id: str, conversation_id: str) -> bool:
        return (user_id, conversation_id) in self._states

    def pending_timers(self) -> int:
        return sum(1 for s in self._states.values() if s.timer is not None and not s.timer.done())

    async def start(self, user_id: str, conversation_id: str, receiver_id: str) -> None:
        key = (user_id, conversation_id)
        current = self._states.get(key)
        # a refresh towards the same peer was authorized when the indicator started
        if current is None or current.receiver_id != receiver_id:
            await self._authorize(user_id, conversation_id, receiver_id)

        async with self._locks.hold(key):
            current = self._states.get(key)
            if current is not None and current.timer is not None:
                current.timer.cancel()
            state = TypingState(
                receiver_id=receiver_id,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=self._timeout),
            )
            state.timer = asyncio.create_task(self._expire(key, state), name=f"typing-expiry:{user_id}:{conversation_id}")
            self._states[key] = state
            if current is None:
                self._emit(user_id, conversation_id, receiver_id, True)
                logger.debug(f"User {user_id} is typing in conversation {conversation_id}")

    async def stop(self, user_id: str, conversation_id: str, receiver_id: Optional[str] = None) -> bool:
        """
        End an active indicator. The stop event always goes to the peer the
        indicator was started for; receiver_id is accepted for frame symmetry.
        """
        key = (user_id, conversation_id)
        async with self._locks.hold(key):
            state = self._states.pop(key, None)
            if state is None:
                return False
            if state.timer is not None:
                state.timer.cancel()
            self._emit(user_id, conversation_id, state.receiver_id, False)
            logger.debug(f"User {user_id} stopped typing in conversation {conversation_id}")
            return True

    async def clear(self, user_id: str, conversation_id: Optional[str] = None) -> int:
        """Stop every active indicator of a user, or only the one for a conversation."""
        keys: List[TypingKey] = [
            key for key in list(self._states)
            if key[0] == user_id and (conversation_id is None or key[1] == conversation_id)
        ]
        cleared = 0
        for key in keys:
            if await self.stop(*key):
                cleared += 1
        return cleared

    async def shutdown(self) -> None:
        for state in self._states.values():
            if state.timer is not None:
                state.timer.cancel()
        self._states.clear()

    async def _expire(self, key: TypingKey, state: TypingState) -> None:
        await asyncio.sleep(self._timeout)
        async with self._locks.hold(key):
            if self._states.get(key) is not state:
                return
            del self._states[key]
            user_id, conversation_id = key
            self._emit(user_id, conversation_id, state.receiver_id, False)
            logger.debug(f"Auto-stopped typing for user {user_id} in conversation {conversation_id}")

    def _emit(self, user_id: str, conversation_id: str, receiver_id: str, is_typing: bool) -> None:
        self._notifier.send(
            receiver_id,
            UserTypingEvent(user_id=user_id, conversation_id=conversation_id, is_typing=is_typing),
        )

    async def _authorize(self, user_id: str, conversation_id: str, receiver_id: str) -> None:
        ensure_object_id(conversation_id, "conversation id")
        ensure_object_id(receiver_id, "receiver id")
        if receiver_id == user_id:
            raise ValidationError("Cannot send typing indicators to yourself")
        try:
            convo = await self._conversation_repo.get_by_id(conversation_id)
        except PyMongoError as exc:
            raise PersistenceError("Could not load conversation") from exc
        if not convo:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if user_id not in convo["participants"] or receiver_id not in convo["participants"]:
            raise AuthorizationError("Typing indicators only go to the other participant of the conversation")
