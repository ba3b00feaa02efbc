"""Chat gateway interface for the platform hosting debate threads."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from agon.store.models import WebhookBinding


@dataclass
class ChatMessage:
    """A message as read back from the chat platform."""
    id: str
    thread_id: str
    author_id: str
    author_name: str
    content: str
    created_at_ms: int
    is_webhook: bool = False
    is_bot: bool = False


@dataclass
class PostedMessage:
    id: str
    created_at_ms: int


@dataclass
class BotIdentity:
    id: str
    name: str


class ChatGateway(ABC):
    """
    Abstract chat platform client.

    Implementations raise ``ChatApiError`` for failed requests,
    ``ChatRateLimited`` when the platform asks to back off and
    ``MissingChatCredential`` when no bot credential is configured.
    """

    name: str = "base"
    # Longest message the platform accepts; None means no limit
    max_message_chars: int | None = None

    def clip_message(self, content: str) -> str:
        """The text the platform will actually show for ``content``."""
        limit = self.max_message_chars
        return content if limit is None or len(content) <= limit else content[:limit]

    @abstractmethod
    async def fetch_recent_messages(self, thread_id: str, limit: int) -> list[ChatMessage]:
        """
        Fetch the newest messages of a thread.

        Args:
            thread_id: Platform thread id.
            limit: Maximum number of messages.

        Returns:
            Messages ordered oldest first.
        """

    @abstractmethod
    async def post_message(self, thread_id: str, content: str) -> PostedMessage:
        """Post as the bot itself."""

    @abstractmethod
    async def post_as_persona(
        self,
        webhook: WebhookBinding,
        thread_id: str,
        content: str,
        persona_name: str,
        avatar_url: str | None = None,
    ) -> PostedMessage:
        """Post through a channel webhook under an agent's name and avatar."""

    @abstractmethod
    async def lock_thread(self, thread_id: str) -> None:
        pass

    @abstractmethod
    async def unlock_thread(self, thread_id: str) -> None:
        pass

    @abstractmethod
    async def trigger_typing(self, thread_id: str) -> None:
        pass

    @abstractmethod
    async def get_bot_identity(self) -> BotIdentity:
        pass

    async def close(self) -> None:
        """Release network resources."""
