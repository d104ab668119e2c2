import logging
from datetime import datetime, timezone
from typing import Optional

from pymongo.errors import PyMongoError

from chatcore.realtime.connection_registry import ConnectionHandle, ConnectionRegistry, Session
from chatcore.realtime.notifier import Notifier
from chatcore.realtime.typing import TypingCoordinator
from chatcore.repositories.user_repository import UserRepository
from chatcore.schemas.chat import PresenceStatus
from chatcore.schemas.events import UserStatusEvent
from chatcore.utils.errors import NotFoundError, PersistenceError
from chatcore.utils.keyed_lock import KeyedLock
from chatcore.utils.validation import ensure_object_id


logger = logging.getLogger("chatcore.services.presence")

# close code sent to a connection superseded by a newer one for the same user
REPLACED_CLOSE_CODE = 4000


class PresenceService:

    def __init__(
        self,
        registry: ConnectionRegistry,
        user_repo: UserRepository,
        notifier: Notifier,
        typing: TypingCoordinator,
    ) -> None:
        self._registry = registry
        self._user_repo = user_repo
        self._notifier = notifier
        self._typing = typing
        self._locks = KeyedLock()

    async def connect(self, user_id: str, handle: ConnectionHandle) -> Session:
        """
        Register a live connection for user_id and announce it.

        A session already registered for the same user is closed before the new
        one takes its place. The online flag is persisted before anyone is told.
        """
        ensure_object_id(user_id, "user id")
        try:
            user = await self._user_repo.get_user_by_id(user_id)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not load user {user_id}") from exc
        if not user:
            raise NotFoundError(f"User {user_id} not found")

        async with self._locks.hold(user_id):
            # persisted first: a failed write leaves any previous session live and untouched
            try:
                await self._user_repo.set_presence(user_id, True, datetime.now(timezone.utc))
            except PyMongoError as exc:
                logger.error(f"Failed to persist online status for user {user_id}: {exc}")
                raise PersistenceError(f"Could not mark user {user_id} online") from exc

            session = Session(user_id, handle)
            session.start()
            previous = self._registry.register(session)
            if previous is not None:
                logger.info(
                    f"Replacing session for user {user_id}",
                    extra={"user_id": user_id, "old_connection_id": previous.connection_id},
                )
                await previous.close(code=REPLACED_CLOSE_CODE)

            self._notifier.broadcast(UserStatusEvent(user_id=user_id, is_online=True), exclude=user_id)

        logger.info(
            f"User {user_id} connected",
            extra={"user_id": user_id, "connection_id": session.connection_id},
        )
        return session

    async def disconnect(self, user_id: str, connection_id: Optional[str] = None) -> bool:
        """Idempotent; a stale connection_id (already replaced) is ignored."""
        async with self._locks.hold(user_id):
            session = self._registry.unregister(user_id, connection_id)
            if session is None:
                return False
            last_seen = datetime.now(timezone.utc)
            try:
                try:
                    await self._user_repo.set_presence(user_id, False, last_seen)
                except PyMongoError as exc:
                    logger.error(f"Failed to persist offline status for user {user_id}: {exc}")
                    raise PersistenceError(f"Could not mark user {user_id} offline") from exc

                self._notifier.broadcast(
                    UserStatusEvent(user_id=user_id, is_online=False, last_seen=last_seen),
                    exclude=user_id,
                )
            finally:
                await session.close()
                await self._typing.clear(user_id)

        logger.info(f"User {user_id} disconnected", extra={"user_id": user_id, "connection_id": connection_id})
        return True

    def lookup(self, user_id: str) -> Optional[Session]:
        return self._registry.lookup(user_id)

    async def is_online(self, user_id: str) -> PresenceStatus:
        if self._registry.is_online(user_id):
            return PresenceStatus(user_id=user_id, is_online=True)
        ensure_object_id(user_id, "user id")
        try:
            user = await self._user_repo.get_user_by_id(user_id)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not load user {user_id}") from exc
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return PresenceStatus(user_id=user_id, is_online=False, last_seen=user.get("last_seen"))

    async def reset_all(self) -> int:
        count = await self._user_repo.mark_all_offline()
        if count:
            logger.info(f"Marked {count} stale users offline on startup")
        return count

    async def shutdown(self) -> None:
        for session in self._registry.sessions():
            self._registry.unregister(session.user_id, session.connection_id)
            await session.close(code=1001)
        await self._typing.shutdown()
