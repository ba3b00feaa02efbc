"""Best-effort system messages and thread locking."""

from __future__ import annotations

from loguru import logger

from agon.channels.base import ChatGateway
from agon.engine.steps import StepExecutor
from agon.errors import StepFailed
from agon.store.models import AuthorType, Room, StoredMessage, local_notification_id, now_ms
from agon.store.rooms import RoomStore

SYSTEM_AUTHOR = "System"


class RoomNotifier:
    """Posts bot notifications into a thread and records them, never failing the caller."""

    def __init__(self, store: RoomStore, gateway: ChatGateway):
        self.store = store
        self.gateway = gateway

    async def notify(
        self,
        steps: StepExecutor,
        room: Room,
        kind: str,
        turn_number: int,
        content: str,
    ) -> bool:
        """
        Post ``content`` as the bot and store it as a notification.

        When the post fails the message is still stored under a local id, so
        the record exists exactly once per (kind, room, turn).
        """
        posted = None
        try:
            posted = await steps.run("notify", lambda: self.gateway.post_message(room.thread_id, content))
        except StepFailed as e:
            logger.warning(f"Room {room.id}: could not post {kind} notification: {e}")

        msg = StoredMessage(
            room_id=room.id,
            external_message_id=posted.id if posted else local_notification_id(kind, room.id, turn_number),
            thread_id=room.thread_id,
            author_type=AuthorType.NOTIFICATION,
            author_name=SYSTEM_AUTHOR,
            content=content,
            created_at_ms=posted.created_at_ms if posted else now_ms(),
        )
        try:
            await steps.run("store-notification", lambda: self.store.insert_message_if_absent(msg))
        except StepFailed as e:
            logger.warning(f"Room {room.id}: could not store {kind} notification: {e}")
        return posted is not None

    async def set_locked(self, steps: StepExecutor, room: Room, locked: bool) -> bool:
        fn = self.gateway.lock_thread if locked else self.gateway.unlock_thread
        try:
            await steps.run("thread-lock", lambda: fn(room.thread_id))
            return True
        except StepFailed as e:
            logger.warning(f"Room {room.id}: could not {'lock' if locked else 'unlock'} thread: {e}")
            return False
