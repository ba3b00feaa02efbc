"""Mirror thread history into the store and pick what each prompt sees."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from agon.channels.base import ChatGateway, ChatMessage
from agon.errors import MissingChatCredential
from agon.store.models import AuthorType, Room, StoredMessage
from agon.store.rooms import RoomStore

MODERATOR_MARKER = "🎙️ **Moderator**"


def format_moderator_announcement(room: Room) -> str:
    return f"{MODERATOR_MARKER}\nRoom title: {room.title}\nTopic: {room.topic}"


def is_moderator_announcement(content: str) -> bool:
    return content.startswith(MODERATOR_MARKER)


def strip_moderator_marker(content: str) -> str:
    return content[len(MODERATOR_MARKER):].lstrip("\n") if is_moderator_announcement(content) else content


def classify_message(msg: ChatMessage, bot_id: str | None) -> AuthorType:
    """Persona webhook posts are agents; the bot speaks as moderator or system; anyone else is audience."""
    if msg.is_webhook:
        return AuthorType.AGENT
    if bot_id and msg.author_id == bot_id:
        return AuthorType.MODERATOR if is_moderator_announcement(msg.content) else AuthorType.NOTIFICATION
    if msg.is_bot:
        return AuthorType.NOTIFICATION
    return AuthorType.AUDIENCE


@dataclass
class DedupWindow:
    """How far a synced copy may sit from its local reply and still count as the same message."""
    early_ms: int = 30_000
    late_ms: int = 30 * 60_000

    def contains(self, local_ms: int, synced_ms: int) -> bool:
        dt = synced_ms - local_ms
        return -self.early_ms < dt < self.late_ms


def raw_window_size(history_limit: int) -> int:
    return max(history_limit * 3, 60)


def _same_author(a: StoredMessage, b: StoredMessage) -> bool:
    """Compare by agent id, or by display name when either id is unknown."""
    if a.author_agent_id and b.author_agent_id:
        return a.author_agent_id == b.author_agent_id
    return bool(a.author_name) and a.author_name == b.author_name


def select_prompt_history(
    raw: list[StoredMessage],
    history_limit: int,
    window: DedupWindow,
) -> list[StoredMessage]:
    """
    Reduce the raw window (oldest first) to the prompt history.

    Notifications are dropped, and a local reply is dropped once its synced
    platform copy is present, so each reply is seen exactly once.
    """
    synced_agent = [m for m in raw if m.author_type == AuthorType.AGENT and not m.is_local]

    def is_duplicate(m: StoredMessage) -> bool:
        return any(
            x.content == m.content
            and _same_author(m, x)
            and window.contains(m.created_at_ms, x.created_at_ms)
            for x in synced_agent
        )

    kept = [
        m
        for m in raw
        if m.author_type != AuthorType.NOTIFICATION
        and not (m.author_type == AuthorType.AGENT and m.is_local and is_duplicate(m))
    ]
    return kept[-history_limit:] if history_limit > 0 else []


def reply_already_posted(
    reply: StoredMessage,
    agent_name: str,
    raw: list[StoredMessage],
    fetched: list[ChatMessage] | None,
    window: DedupWindow,
) -> bool:
    """True when the platform already shows ``reply``, either synced into the store or in a fresh fetch."""
    for m in raw:
        if (
            m.author_type == AuthorType.AGENT
            and not m.is_local
            and m.content == reply.content
            and _same_author(reply, m)
            and window.contains(reply.created_at_ms, m.created_at_ms)
        ):
            return True
    for m in fetched or []:
        if (
            m.is_webhook
            and m.content == reply.content
            and m.author_name == agent_name
            and window.contains(reply.created_at_ms, m.created_at_ms)
        ):
            return True
    return False


class HistorySynchronizer:
    """Pulls the thread from the chat platform and upserts it into the room store."""

    def __init__(self, store: RoomStore, gateway: ChatGateway, fetch_limit: int = 50):
        self.store = store
        self.gateway = gateway
        self.fetch_limit = fetch_limit

    async def fetch(self, room: Room) -> list[ChatMessage] | None:
        """Recent thread messages, or None when no chat credential is configured."""
        try:
            await self.gateway.get_bot_identity()
            return await self.gateway.fetch_recent_messages(room.thread_id, self.fetch_limit)
        except MissingChatCredential:
            logger.debug(f"Room {room.id}: no chat credential, using local history only")
            return None

    async def upsert(self, room: Room, fetched: list[ChatMessage]) -> int:
        """Store fetched messages keyed by platform id. Returns how many were written."""
        bot = await self.gateway.get_bot_identity()
        agent_ids = {a.name: a.id for a in await self.store.list_agents()}
        for msg in fetched:
            author_type = classify_message(msg, bot.id)
            content = msg.content
            author_name = msg.author_name
            if author_type == AuthorType.MODERATOR:
                content = strip_moderator_marker(content)
                author_name = "Moderator"
            await self.store.upsert_synced_message(
                StoredMessage(
                    room_id=room.id,
                    external_message_id=msg.id,
                    thread_id=room.thread_id,
                    author_type=author_type,
                    author_agent_id=agent_ids.get(msg.author_name) if author_type == AuthorType.AGENT else None,
                    author_name=author_name,
                    content=content,
                    created_at_ms=msg.created_at_ms,
                )
            )
        return len(fetched)

    async def load_raw(self, room: Room, history_limit: int) -> list[StoredMessage]:
        """The newest ``max(limit*3, 60)`` stored messages, oldest first."""
        return await self.store.recent_messages(room.id, raw_window_size(history_limit))
