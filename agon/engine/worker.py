"""Queue consumers that dispatch jobs to their handlers."""

from __future__ import annotations

import asyncio

from loguru import logger

from agon.bus.queue import JobQueue, QueuedJob
from agon.config.schema import QueueConfig
from agon.engine.audience import AudienceSlotCloser
from agon.engine.finalize import RoomFinalizer
from agon.engine.jobs import CloseAudienceSlotJob, FinalizeRoomJob, InvalidJob, TurnJob, parse_job
from agon.engine.turn import TurnEngine
from agon.errors import ArenaError, StepFailed


class QueueWorker:
    """
    Pulls jobs from the durable queue with a bounded pool of consumers.

    A job is acked once its handler returns or fails for good, and released
    for redelivery with exponential backoff when the failure is transient.
    """

    def __init__(
        self,
        config: QueueConfig,
        queue: JobQueue,
        engine: TurnEngine,
        closer: AudienceSlotCloser,
        finalizer: RoomFinalizer,
    ):
        self.config = config
        self.queue = queue
        self.engine = engine
        self.closer = closer
        self.finalizer = finalizer
        self._running = False

    def retry_delay(self, attempts: int) -> float:
        delay = self.config.retry_delay_seconds * (2 ** max(0, attempts - 1))
        return min(delay, self.config.max_retry_delay_seconds)

    async def dispatch(self, job: TurnJob | CloseAudienceSlotJob | FinalizeRoomJob) -> None:
        if isinstance(job, TurnJob):
            await self.engine.process(job)
        elif isinstance(job, CloseAudienceSlotJob):
            await self.closer.close(job)
        else:
            await self.finalizer.finalize(job.room_id)

    async def handle(self, queued: QueuedJob) -> None:
        try:
            job = parse_job(queued.payload)
        except InvalidJob as e:
            logger.error(f"Dropping job {queued.id}: {e}")
            await self.queue.ack(queued.id)
            return

        try:
            await self.dispatch(job)
        except (StepFailed, ArenaError) as e:
            if not e.retryable:
                logger.error(f"Job {job.dedup_key} failed permanently: {e}")
                await self.queue.ack(queued.id)
                return
            if queued.attempts >= self.config.max_attempts:
                logger.error(f"Job {job.dedup_key} dropped after {queued.attempts} attempts: {e}")
                await self.queue.ack(queued.id)
                return
            delay = self.retry_delay(queued.attempts)
            logger.warning(f"Job {job.dedup_key} failed (attempt {queued.attempts}), retrying in {delay:.0f}s: {e}")
            await self.queue.nack(queued.id, delay)
            return
        except Exception:
            logger.exception(f"Job {job.dedup_key} crashed")
            await self.queue.ack(queued.id)
            return

        await self.queue.ack(queued.id)

    async def run_once(self) -> bool:
        """Handle one available job. Returns False when the queue was empty."""
        queued = await self.queue.receive()
        if queued is None:
            return False
        await self.handle(queued)
        return True

    async def _consume(self, worker_id: int) -> None:
        while self._running:
            try:
                handled = await self.run_once()
            except ArenaError as e:
                logger.warning(f"Worker {worker_id}: queue unavailable: {e}")
                handled = False
            if not handled:
                await asyncio.sleep(self.config.poll_interval_seconds)

    async def drain(self, max_jobs: int = 1000) -> int:
        """Handle jobs until none is available. Returns how many ran."""
        count = 0
        while count < max_jobs and await self.run_once():
            count += 1
        return count

    async def run(self) -> None:
        self._running = True
        logger.info(f"Queue worker started with {self.config.workers} consumers")
        await asyncio.gather(*(self._consume(i) for i in range(max(1, self.config.workers))))

    def stop(self) -> None:
        self._running = False
