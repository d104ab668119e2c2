from chatcore.realtime.connection_registry import ConnectionRegistry
from chatcore.realtime.notifier import Notifier
from chatcore.realtime.typing import TypingCoordinator
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.services.chat_service import ChatService
from chatcore.services.presence_service import PresenceService
from chatcore.services.reaction_service import ReactionService


class ChatCoordinator:
    """Owns the in-memory session state of the process and the services that act on it."""

    def __init__(
        self,
        user_repo: UserRepository,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        typing_timeout: float = 3.0,
    ) -> None:
        self.registry = ConnectionRegistry()
        self.notifier = Notifier(self.registry)
        self.typing = TypingCoordinator(self.notifier, conversation_repo, timeout_seconds=typing_timeout)
        self.presence = PresenceService(self.registry, user_repo, self.notifier, self.typing)
        self.chat = ChatService(message_repo, conversation_repo, self.notifier)
        self.reactions = ReactionService(message_repo, self.notifier)

    @classmethod
    def from_database(cls, db, typing_timeout: float = 3.0) -> "ChatCoordinator":
        return cls(
            UserRepository(db),
            ConversationRepository(db),
            MessageRepository(db),
            typing_timeout=typing_timeout,
        )

    async def startup(self) -> None:
        await self.presence.reset_all()

    async def shutdown(self) -> None:
        await self.presence.shutdown()
