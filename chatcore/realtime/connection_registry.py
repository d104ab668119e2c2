import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol


logger = logging.getLogger("chatcore.realtime.registry")


class ConnectionHandle(Protocol):

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Session:
    """
    A live connection for one user.

    Outbound events are queued and written by a dedicated writer task, so
    pushing to a session never waits on the peer's socket.
    """

    def __init__(self, user_id: str, handle: ConnectionHandle, connection_id: Optional[str] = None) -> None:
        self.user_id = user_id
        self.handle = handle
        self.connection_id = connection_id or uuid.uuid4().hex
        self.connected_at = datetime.now(timezone.utc)
        self.closed = False
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"session-writer:{self.user_id}")

    def push(self, event: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        self._outbox.put_nowait(event)
        return True

    async def _drain(self) -> None:
        while True:
            event = await self._outbox.get()
            try:
                await self.handle.send_json(event)
            except Exception as exc:
                # peer went away mid-send; the transport's own teardown disconnects the session
                logger.debug(
                    f"Dropped {event.get('type')} for user {self.user_id}: {exc}",
                    extra={"user_id": self.user_id, "connection_id": self.connection_id},
                )
            finally:
                self._outbox.task_done()

    async def flush(self) -> None:
        await self._outbox.join()

    async def close(self, code: Optional[int] = None) -> None:
        if self.closed:
            return
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
        if code is not None:
            try:
                await self.handle.close(code=code)
            except Exception as exc:
                logger.debug(f"Closing stale handle for user {self.user_id} failed: {exc}")


class ConnectionRegistry:
    """Maps a user id to its single live session (last connection wins)."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def register(self, session: Session) -> Optional[Session]:
        previous = self._sessions.get(session.user_id)
        self._sessions[session.user_id] = session
        return previous

    def unregister(self, user_id: str, connection_id: Optional[str] = None) -> Optional[Session]:
        session = self._sessions.get(user_id)
        if session is None:
            return None
        if connection_id is not None and session.connection_id != connection_id:
            return None
        del self._sessions[user_id]
        return session

    def lookup(self, user_id: str) -> Optional[Session]:
        return self._sessions.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._sessions

    def sessions(self, exclude: Optional[str] = None) -> List[Session]:
        return [s for uid, s in self._sessions.items() if uid != exclude]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions
