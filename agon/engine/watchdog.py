"""Periodic recovery for rooms whose next job never arrived."""

from __future__ import annotations

import asyncio

from loguru import logger

from agon.config.schema import WatchdogConfig
from agon.engine.jobs import TurnJob
from agon.engine.scheduler import TurnScheduler
from agon.errors import ArenaError
from agon.store.models import Room, RoomStatus, now_ms
from agon.store.rooms import RoomStore


class StallWatchdog:
    """Re-enqueues the next turn of rooms that went quiet without one queued."""

    def __init__(self, config: WatchdogConfig, store: RoomStore, scheduler: TurnScheduler):
        self.config = config
        self.store = store
        self.scheduler = scheduler
        self._running = False

    def threshold_seconds(self, room: Room) -> int:
        if room.status == RoomStatus.ACTIVE:
            return self.config.active_stall_seconds
        return room.audience_slot_duration_seconds + self.config.audience_grace_seconds

    async def tick(self, now: int | None = None) -> list[int]:
        """Check every running room once. Returns the ids of recovered rooms."""
        now = now if now is not None else now_ms()
        rooms = await self.store.list_rooms([RoomStatus.ACTIVE, RoomStatus.AUDIENCE_SLOT])
        recovered = []
        for room in rooms:
            try:
                if await self._check(room, now):
                    recovered.append(room.id)
            except ArenaError as e:
                logger.warning(f"Watchdog: room {room.id} check failed: {e}")
        return recovered

    async def _check(self, room: Room, now: int) -> bool:
        last = await self.store.last_message_at(room.id) or 0
        threshold = self.threshold_seconds(room)
        if now - last <= threshold * 1000:
            return False
        next_turn = room.current_turn_number + 1
        if room.last_enqueued_turn_number >= next_turn:
            return False

        if room.status == RoomStatus.AUDIENCE_SLOT:
            await self.store.set_status(room.id, RoomStatus.ACTIVE, expected=RoomStatus.AUDIENCE_SLOT)
        await self.scheduler.enqueue(TurnJob(room.id, next_turn))
        logger.info(
            f"Watchdog: room {room.id} stalled for {(now - last) // 1000}s "
            f"(threshold {threshold}s, was {room.status.value}); turn {next_turn} re-enqueued"
        )
        return True

    async def run(self) -> None:
        self._running = True
        logger.info(f"Stall watchdog started (every {self.config.interval_seconds}s)")
        while self._running:
            await asyncio.sleep(self.config.interval_seconds)
            try:
                await self.tick()
            except ArenaError as e:
                logger.warning(f"Watchdog tick failed: {e}")

    def stop(self) -> None:
        self._running = False
