"""Opening, pausing and resuming rooms."""

from __future__ import annotations

from loguru import logger

from agon.agent.history import format_moderator_announcement, strip_moderator_marker
from agon.config.schema import Config
from agon.engine.jobs import TurnJob
from agon.engine.notify import RoomNotifier
from agon.engine.scheduler import TurnScheduler
from agon.engine.steps import StepExecutor
from agon.errors import AgentNotFound, RoomNotFound, StepFailed
from agon.store.models import AuthorType, Room, RoomStatus, StoredMessage, now_ms
from agon.store.rooms import RoomStore


class RoomService:
    """Management operations; the turn loop itself never calls these."""

    def __init__(self, config: Config, store: RoomStore, notifier: RoomNotifier, scheduler: TurnScheduler):
        self.config = config
        self.store = store
        self.notifier = notifier
        self.scheduler = scheduler

    async def open_room(
        self,
        *,
        parent_channel_id: str,
        thread_id: str,
        topic: str,
        title: str,
        agent_ids: list[str],
        max_turns: int | None = None,
        audience_slot_duration_seconds: int = 0,
        max_input_tokens: int | None = None,
        max_output_tokens: int | None = None,
    ) -> Room:
        """
        Start (or restart) a debate on a thread.

        The moderator announcement is posted and stored, the thread is locked
        for the audience and turn 1 is queued.
        """
        for agent_id in agent_ids:
            if await self.store.get_agent(agent_id) is None:
                raise AgentNotFound(agent_id)

        room = await self.store.open_room(
            parent_channel_id=parent_channel_id,
            thread_id=thread_id,
            topic=topic,
            title=title,
            agent_ids=agent_ids,
            max_turns=max_turns or self.config.arena.max_turns,
            audience_slot_duration_seconds=audience_slot_duration_seconds,
            max_input_tokens=max_input_tokens,
            max_output_tokens=max_output_tokens,
        )
        steps = StepExecutor(self.config.steps)
        announcement = format_moderator_announcement(room)
        posted = None
        try:
            posted = await steps.run("notify", lambda: self.notifier.gateway.post_message(room.thread_id, announcement))
        except StepFailed as e:
            logger.warning(f"Room {room.id}: moderator announcement not posted: {e}")
        await self.store.insert_message_if_absent(
            StoredMessage(
                room_id=room.id,
                external_message_id=posted.id if posted else f"local-moderator:{room.id}:{room.created_at_ms}",
                thread_id=room.thread_id,
                author_type=AuthorType.MODERATOR,
                author_name="Moderator",
                content=strip_moderator_marker(announcement),
                created_at_ms=posted.created_at_ms if posted else now_ms(),
            )
        )
        await self.notifier.set_locked(steps, room, True)
        await self.scheduler.enqueue(TurnJob(room.id, 1))
        return room

    async def pause_room(self, room_id: int) -> bool:
        room = await self._require(room_id)
        changed = await self.store.set_status(room.id, RoomStatus.PAUSED)
        logger.info(f"Room {room.id} paused at turn {room.current_turn_number}")
        return changed

    async def resume_room(self, room_id: int) -> bool:
        """
        Reactivate a paused room and queue its next turn.

        Returns False when the room was already active or has no turns left.
        """
        room = await self._require(room_id)
        if room.status == RoomStatus.ACTIVE:
            return False
        if room.current_turn_number >= room.max_turns:
            logger.warning(f"Room {room.id} already reached its turn limit ({room.max_turns})")
            return False
        await self.store.set_status(room.id, RoomStatus.ACTIVE)
        next_turn = room.current_turn_number + 1
        sent = await self.scheduler.reenqueue_turn(TurnJob(room.id, next_turn))
        logger.info(f"Room {room.id} resumed at turn {next_turn}" + ("" if sent else " (job still queued)"))
        return True

    async def _require(self, room_id: int) -> Room:
        room = await self.store.get_room(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room
