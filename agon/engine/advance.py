"""Where a room goes after a turn."""

from __future__ import annotations

from dataclasses import dataclass

from agon.engine.jobs import CloseAudienceSlotJob, FinalizeRoomJob, Job, TurnJob
from agon.store.models import Participant, Room, RoomStatus


@dataclass
class AdvanceDecision:
    status: RoomStatus
    next_agent_id: str | None
    next_job: Job
    reason: str  # agent_exit | max_turns | audience_slot | next_agent

    @property
    def stops(self) -> bool:
        return self.status == RoomStatus.PAUSED


def next_participant(participants: list[Participant], agent_id: str) -> tuple[int, str]:
    """Index of ``agent_id`` in turn order and the agent after it, wrapping around."""
    order = [p.agent_id for p in sorted(participants, key=lambda p: p.turn_order)]
    idx = order.index(agent_id) if agent_id in order else -1
    return idx, order[(idx + 1) % len(order)]


def decide_advance(
    room: Room,
    participants: list[Participant],
    turn_number: int,
    agent_id: str,
    *,
    failed: bool,
    exited: bool,
) -> AdvanceDecision:
    """
    Decide the room's next state after ``agent_id`` spoke (or failed to) at ``turn_number``.

    A failed turn never ends the debate early and never opens the audience
    slot; the next agent simply takes over.
    """
    idx, next_agent_id = next_participant(participants, agent_id)

    if exited and not failed:
        return AdvanceDecision(RoomStatus.PAUSED, next_agent_id, FinalizeRoomJob(room.id), "agent_exit")
    if turn_number >= room.max_turns:
        return AdvanceDecision(RoomStatus.PAUSED, next_agent_id, FinalizeRoomJob(room.id), "max_turns")
    if not failed and room.audience_slot_duration_seconds > 0 and idx == len(participants) - 1:
        return AdvanceDecision(
            RoomStatus.AUDIENCE_SLOT,
            next_agent_id,
            CloseAudienceSlotJob(room.id, turn_number, room.audience_slot_duration_seconds),
            "audience_slot",
        )
    return AdvanceDecision(RoomStatus.ACTIVE, next_agent_id, TurnJob(room.id, turn_number + 1), "next_agent")
