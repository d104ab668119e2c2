import logging
from typing import Optional

from chatcore.realtime.connection_registry import ConnectionRegistry
from chatcore.schemas.chat import CamelModel


logger = logging.getLogger("chatcore.realtime.notifier")


class Notifier:
    """Pushes events to connected users; events for offline users are dropped."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def send(self, user_id: str, event: CamelModel) -> bool:
        session = self._registry.lookup(user_id)
        payload = event.to_wire()
        if session is None or not session.push(payload):
            logger.debug(f"User {user_id} not connected, skipped {payload['type']}")
            return False
        return True

    def broadcast(self, event: CamelModel, exclude: Optional[str] = None) -> int:
        payload = event.to_wire()
        sent = 0
        for session in self._registry.sessions(exclude=exclude):
            if session.push(payload):
                sent += 1
        logger.debug(f"Broadcast {payload['type']} to {sent} sessions")
        return sent
