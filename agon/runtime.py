"""Wiring of every arena component around one database."""

from __future__ import annotations

from dataclasses import dataclass

from agon.bus.queue import JobQueue
from agon.channels.base import ChatGateway
from agon.channels.discord import DiscordGateway
from agon.config.schema import Config
from agon.engine.audience import AudienceSlotCloser
from agon.engine.finalize import RoomFinalizer
from agon.engine.notify import RoomNotifier
from agon.engine.rooms import RoomService
from agon.engine.scheduler import TurnScheduler
from agon.engine.turn import TurnEngine
from agon.engine.watchdog import StallWatchdog
from agon.engine.worker import QueueWorker
from agon.observability.turn_events import TurnEventWriter
from agon.providers.base import LLMProvider
from agon.providers.litellm_provider import LiteLLMProvider
from agon.store.database import Database
from agon.store.memory import MemoryStore
from agon.store.rooms import RoomStore


@dataclass
class Arena:
    config: Config
    db: Database
    store: RoomStore
    memory: MemoryStore
    queue: JobQueue
    gateway: ChatGateway
    provider: LLMProvider
    events: TurnEventWriter
    scheduler: TurnScheduler
    notifier: RoomNotifier
    engine: TurnEngine
    closer: AudienceSlotCloser
    finalizer: RoomFinalizer
    watchdog: StallWatchdog
    rooms: RoomService
    worker: QueueWorker

    @classmethod
    async def create(
        cls,
        config: Config,
        *,
        gateway: ChatGateway | None = None,
        provider: LLMProvider | None = None,
        db_path: str | None = None,
    ) -> "Arena":
        """Connect the database and build every component; real gateways unless given."""
        db = await Database(db_path or config.database_path).connect()
        store = RoomStore(db)
        memory = MemoryStore(db)
        queue = JobQueue(db, lease_seconds=config.queue.lease_seconds)
        gateway = gateway or DiscordGateway(config.discord)
        provider = provider or LiteLLMProvider(config.providers)
        events = TurnEventWriter(db)
        scheduler = TurnScheduler(store, queue)
        notifier = RoomNotifier(store, gateway)
        engine = TurnEngine(config, store, memory, gateway, provider, scheduler, events)
        closer = AudienceSlotCloser(store, notifier, scheduler, events, config.steps)
        finalizer = RoomFinalizer(config.finalize, store, memory, provider)
        return cls(
            config=config,
            db=db,
            store=store,
            memory=memory,
            queue=queue,
            gateway=gateway,
            provider=provider,
            events=events,
            scheduler=scheduler,
            notifier=notifier,
            engine=engine,
            closer=closer,
            finalizer=finalizer,
            watchdog=StallWatchdog(config.watchdog, store, scheduler),
            rooms=RoomService(config, store, notifier, scheduler),
            worker=QueueWorker(config.queue, queue, engine, closer, finalizer),
        )

    async def close(self) -> None:
        self.worker.stop()
        self.watchdog.stop()
        await self.gateway.close()
        await self.db.close()
