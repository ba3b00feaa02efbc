"""Closing the audience slot and handing the floor back to the agents."""

from __future__ import annotations

from loguru import logger

from agon.config.schema import StepsConfig
from agon.engine.jobs import CloseAudienceSlotJob, TurnJob
from agon.engine.notify import RoomNotifier
from agon.engine.scheduler import TurnScheduler
from agon.engine.steps import StepExecutor
from agon.observability.turn_events import TurnEventStatus, TurnEventWriter, TurnPhase
from agon.store.models import RoomStatus
from agon.store.rooms import RoomStore


class AudienceSlotCloser:
    """
    Handles ``close_audience_slot`` jobs.

    Does nothing when the room was paused meanwhile, has already moved past
    the job's turn, or already has its next turn queued.
    """

    def __init__(
        self,
        store: RoomStore,
        notifier: RoomNotifier,
        scheduler: TurnScheduler,
        events: TurnEventWriter,
        policies: StepsConfig | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.scheduler = scheduler
        self.events = events
        self.policies = policies

    async def close(self, job: CloseAudienceSlotJob) -> TurnJob | None:
        steps = StepExecutor(self.policies)
        room = await steps.run("load-room", lambda: self.store.get_room(job.room_id))
        if room is None:
            return None
        if room.status not in (RoomStatus.AUDIENCE_SLOT, RoomStatus.ACTIVE):
            return None
        if room.current_turn_number != job.turn_number:
            return None

        next_turn = room.current_turn_number + 1
        if room.last_enqueued_turn_number >= next_turn:
            await self.events.write(
                room.id,
                job.turn_number,
                TurnPhase.AUDIENCE_SLOT_CLOSE,
                data={"skippedEnqueue": True, "nextTurnNumber": next_turn},
            )
            return None

        reopened = await steps.run(
            "advance-turn",
            lambda: self.store.set_status(room.id, RoomStatus.ACTIVE, expected=RoomStatus.AUDIENCE_SLOT),
        )
        # An already active room is a redelivery after this step; anything else was paused meanwhile
        if not reopened and room.status != RoomStatus.ACTIVE:
            logger.info(f"Room {room.id}: left the audience slot while closing it, nothing queued")
            return None

        next_agent = None
        if room.current_turn_agent_id:
            next_agent = await steps.run("load-agent", lambda: self.store.get_agent(room.current_turn_agent_id))
        next_name = next_agent.name if next_agent else "Unknown"

        await self.notifier.notify(
            steps,
            room,
            "audience_close",
            job.turn_number,
            f"🔒 Audience slot closed - debate continues with {next_name}",
        )
        await self.notifier.set_locked(steps, room, True)
        next_job = TurnJob(room.id, next_turn)
        await steps.run("enqueue-next", lambda: self.scheduler.enqueue(next_job))
        await self.events.write(
            room.id,
            job.turn_number,
            TurnPhase.AUDIENCE_SLOT_CLOSE,
            TurnEventStatus.OK,
            {"nextTurnNumber": next_turn},
        )
        logger.info(f"Room {room.id}: audience slot closed, turn {next_turn} ({next_name}) queued")
        return next_job
