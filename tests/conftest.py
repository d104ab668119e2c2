import pytest

from chatcore.services.coordinator import ChatCoordinator
from fakes import FakeConversationRepository, FakeMessageRepository, FakeUserRepository


TYPING_TIMEOUT = 0.05


@pytest.fixture
def users() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def conversations() -> FakeConversationRepository:
    return FakeConversationRepository()


@pytest.fixture
def messages() -> FakeMessageRepository:
    return FakeMessageRepository()


@pytest.fixture
def alice(users) -> str:
    return users.add_user("alice")


@pytest.fixture
def bob(users) -> str:
    return users.add_user("bob")


@pytest.fixture
def coordinator(users, conversations, messages) -> ChatCoordinator:
    return ChatCoordinator(users, conversations, messages, typing_timeout=TYPING_TIMEOUT)

