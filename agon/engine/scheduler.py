"""Guarded enqueueing of follow-up jobs."""

from __future__ import annotations

from loguru import logger

from agon.bus.queue import JobQueue
from agon.engine.jobs import CloseAudienceSlotJob, Job, TurnJob
from agon.store.rooms import RoomStore


class TurnScheduler:
    """
    The only way jobs enter the queue.

    A turn job is sent only while the room's enqueue marker is below its
    turn number, and the marker is raised afterwards. Together with the
    queue's dedup key this keeps exactly one live job per turn even when the
    same handler runs twice.
    """

    def __init__(self, store: RoomStore, queue: JobQueue):
        self.store = store
        self.queue = queue

    async def enqueue(self, job: Job) -> bool:
        if isinstance(job, TurnJob):
            return await self.enqueue_turn(job)
        delay = job.delay_seconds if isinstance(job, CloseAudienceSlotJob) else 0
        sent = await self.queue.send(job.to_payload(), delay_seconds=delay, dedup_key=job.dedup_key)
        if sent:
            logger.info(f"Enqueued {job.dedup_key} (delay {delay}s)")
        return sent

    async def enqueue_turn(self, job: TurnJob) -> bool:
        room = await self.store.get_room(job.room_id)
        if room is None:
            logger.warning(f"Not enqueueing turn {job.turn_number}: room {job.room_id} is gone")
            return False
        if room.last_enqueued_turn_number >= job.turn_number:
            logger.debug(
                f"Room {room.id}: turn {job.turn_number} already enqueued "
                f"(marker {room.last_enqueued_turn_number})"
            )
            return False
        sent = await self.queue.send(job.to_payload(), dedup_key=job.dedup_key)
        await self.store.mark_enqueued(room.id, job.turn_number)
        if sent:
            logger.info(f"Room {room.id}: enqueued turn {job.turn_number}")
        return sent

    async def reenqueue_turn(self, job: TurnJob) -> bool:
        """
        Send a turn job even if the marker says it was already enqueued.

        Used when resuming a paused room: the earlier job for this turn was
        dropped by the pause. A copy still waiting in the queue is kept out by
        its dedup key.
        """
        sent = await self.queue.send(job.to_payload(), dedup_key=job.dedup_key)
        await self.store.mark_enqueued(job.room_id, job.turn_number)
        return sent
