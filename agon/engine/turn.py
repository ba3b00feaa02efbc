"""Turn engine: one queue job in, at most one reply out, room advanced exactly once."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum

from loguru import logger

from agon.agent.context import ContextBuilder
from agon.agent.history import (
    DedupWindow,
    HistorySynchronizer,
    raw_window_size,
    reply_already_posted,
    select_prompt_history,
)
from agon.agent.loop import ToolCallLoop, TurnReply
from agon.agent.tools.debate import build_debate_tools
from agon.channels.base import ChatGateway
from agon.config.schema import Config
from agon.engine.advance import AdvanceDecision, decide_advance
from agon.engine.jobs import CloseAudienceSlotJob, Job, TurnJob
from agon.engine.notify import RoomNotifier
from agon.engine.scheduler import TurnScheduler
from agon.engine.steps import StepExecutor
from agon.errors import AgentNotFound, ArenaError, RoomNotFound, StepFailed
from agon.observability.turn_events import TurnEventStatus, TurnEventWriter, TurnPhase
from agon.providers.base import LLMProvider
from agon.providers.overrides import cap_max_tokens
from agon.store.memory import MemoryStore
from agon.store.models import (
    Agent,
    AuthorType,
    Participant,
    Room,
    RoomStatus,
    StoredMessage,
    WebhookBinding,
    local_turn_id,
    now_ms,
)
from agon.store.rooms import RoomStore


class TurnAction(str, Enum):
    STOP = "stop"
    REDELIVERY = "redelivery"
    ADVANCED = "advanced"


@dataclass
class TurnOutcome:
    action: TurnAction
    reason: str
    next_jobs: list[Job] = field(default_factory=list)
    reply: StoredMessage | None = None
    failed: bool = False


@dataclass
class _TurnContext:
    agent: Agent
    agents: dict[str, Agent]
    participants: list[Participant]
    webhook: WebhookBinding | None


def _error_label(error: BaseException) -> str:
    cause = error.cause if isinstance(error, StepFailed) else error
    if isinstance(cause, ArenaError):
        return cause.kind.value
    return type(cause).__name__


class TurnEngine:
    """
    Processes ``TurnJob``s.

    The job is a strictly sequential list of named steps run through a
    ``StepExecutor``. Before anything else the room's turn counter decides
    whether the job is current, a redelivery of the job that just finished
    or stale. A current job syncs history, produces (or reuses) the reply,
    posts it once, then advances the room with a conditional update and
    enqueues whatever comes next through the ``TurnScheduler``.
    """

    def __init__(
        self,
        config: Config,
        store: RoomStore,
        memory: MemoryStore,
        gateway: ChatGateway,
        provider: LLMProvider,
        scheduler: TurnScheduler,
        events: TurnEventWriter,
    ):
        self.config = config
        self.store = store
        self.memory = memory
        self.gateway = gateway
        self.scheduler = scheduler
        self.events = events
        self.context = ContextBuilder()
        self.history = HistorySynchronizer(store, gateway, fetch_limit=config.discord.fetch_limit)
        self.loop = ToolCallLoop(provider, self.context, max_rounds=config.arena.max_tool_rounds)
        self.notifier = RoomNotifier(store, gateway)
        self.window = DedupWindow(
            early_ms=config.arena.dedup_early_seconds * 1000,
            late_ms=config.arena.dedup_late_seconds * 1000,
        )

    async def process(self, job: TurnJob) -> TurnOutcome:
        steps = StepExecutor(self.config.steps)
        room = await steps.run("load-room", lambda: self._load_room(job.room_id))

        gate = self._check_turn(room, job.turn_number)
        if gate is not None:
            if gate.action == TurnAction.REDELIVERY:
                for next_job in gate.next_jobs:
                    await steps.run("enqueue-next", lambda: self.scheduler.enqueue(next_job))
            logger.debug(f"Room {room.id} turn {job.turn_number}: {gate.action.value} ({gate.reason})")
            return gate

        return await self._run_turn(room, job.turn_number, steps)

    def _check_turn(self, room: Room, turn_number: int) -> TurnOutcome | None:
        """Idempotency gate. Returns None when the job should run."""
        if room.status == RoomStatus.PAUSED:
            return TurnOutcome(TurnAction.STOP, "paused")

        current = room.current_turn_number
        if current == turn_number:
            next_jobs: list[Job] = []
            if room.status == RoomStatus.AUDIENCE_SLOT and room.audience_slot_duration_seconds > 0:
                next_jobs.append(CloseAudienceSlotJob(room.id, turn_number, room.audience_slot_duration_seconds))
            elif room.last_enqueued_turn_number < turn_number + 1:
                next_jobs.append(TurnJob(room.id, turn_number + 1))
            return TurnOutcome(TurnAction.REDELIVERY, "already processed", next_jobs)

        if current + 1 != turn_number:
            return TurnOutcome(TurnAction.STOP, f"stale (room at turn {current})")
        if room.status != RoomStatus.ACTIVE:
            return TurnOutcome(TurnAction.STOP, f"room is {room.status.value}")
        return None

    async def _load_room(self, room_id: int) -> Room:
        room = await self.store.get_room(room_id)
        if room is None:
            raise RoomNotFound(room_id)
        return room

    async def _load_context(self, room: Room) -> _TurnContext:
        participants = await self.store.list_participants(room.id)
        agents = {a.id: a for a in await self.store.list_room_agents(room.id)}
        agent = agents.get(room.current_turn_agent_id or "")
        if agent is None:
            raise AgentNotFound(room.current_turn_agent_id)
        webhook = await self.store.get_webhook(room.parent_channel_id)
        return _TurnContext(agent=agent, agents=agents, participants=participants, webhook=webhook)

    async def _run_turn(self, room: Room, turn_number: int, steps: StepExecutor) -> TurnOutcome:
        log = logger.bind(room_id=room.id, turn=turn_number)
        ctx = await steps.run("load-agent", lambda: self._load_context(room))
        agent = ctx.agent
        await self._event(room, turn_number, TurnPhase.START, data={"agentId": agent.id})
        log.info(f"Room {room.id} turn {turn_number}: {agent.name} is up")

        fetched = await self._sync_history(room, turn_number, steps)
        limit = self.config.arena.history_limit
        raw = await steps.run("load-history", lambda: self.history.load_raw(room, limit))
        prompt_history = select_prompt_history(raw, limit, self.window)

        local_id = local_turn_id(room.id, turn_number)
        existing = await steps.run("check-existing-reply", lambda: self.store.get_message(local_id))

        failure: BaseException | None = None
        reply_msg: StoredMessage | None = existing
        if existing is not None:
            log.debug(f"Reusing persisted reply for turn {turn_number}")
        else:
            try:
                reply = await self._generate(room, agent, prompt_history, turn_number, steps)
            except (StepFailed, ArenaError) as e:
                failure = e
                await self._handle_llm_failure(room, agent, turn_number, e, steps)
            else:
                reply_msg = await steps.run(
                    "persist-message",
                    lambda: self._persist_reply(room, agent, turn_number, reply),
                )

        if reply_msg is not None:
            await self._post_reply(room, ctx, turn_number, reply_msg, raw, fetched, existing is not None, steps)

        decision = decide_advance(
            room,
            ctx.participants,
            turn_number,
            agent.id,
            failed=failure is not None,
            exited=bool(reply_msg and reply_msg.is_exit),
        )
        advanced = await steps.run(
            "advance-turn",
            lambda: self.store.advance_room(
                room.id,
                expected_turn=turn_number - 1,
                turn_number=turn_number,
                status=decision.status,
                next_agent_id=decision.next_agent_id,
            ),
        )
        if not advanced:
            log.warning(f"Room {room.id} changed while turn {turn_number} ran; not advancing")
            return TurnOutcome(TurnAction.STOP, "room changed concurrently", reply=reply_msg, failed=failure is not None)

        await self._after_advance(room, ctx, turn_number, decision, steps)
        await steps.run("enqueue-next", lambda: self.scheduler.enqueue(decision.next_job))
        await self._event(
            room,
            turn_number,
            TurnPhase.FINISH,
            TurnEventStatus.FAIL if failure else TurnEventStatus.OK,
            {"reason": decision.reason, "nextAgentId": decision.next_agent_id},
        )
        log.info(f"Room {room.id} turn {turn_number} done: {decision.reason}")
        return TurnOutcome(
            TurnAction.ADVANCED,
            decision.reason,
            [decision.next_job],
            reply=reply_msg,
            failed=failure is not None,
        )

    async def _sync_history(self, room: Room, turn_number: int, steps: StepExecutor):
        try:
            fetched = await steps.run("discord-sync", lambda: self.history.fetch(room))
            if fetched is None:
                await self._event(room, turn_number, TurnPhase.DISCORD_SYNC, data={"skipped": True})
                return None
            await steps.run("sync-history", lambda: self.history.upsert(room, fetched))
        except StepFailed as e:
            await self._event(room, turn_number, TurnPhase.DISCORD_SYNC, TurnEventStatus.FAIL, {"error": _error_label(e)})
            raise
        await self._event(room, turn_number, TurnPhase.DISCORD_SYNC, TurnEventStatus.OK, {"fetched": len(fetched)})
        return fetched

    async def _generate(
        self,
        room: Room,
        agent: Agent,
        history: list[StoredMessage],
        turn_number: int,
        steps: StepExecutor,
    ) -> TurnReply:
        delay = self.config.arena.thinking_delay_seconds
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await steps.run("typing", lambda: self.gateway.trigger_typing(room.thread_id))
        except StepFailed as e:
            logger.debug(f"Typing indicator skipped: {e}")

        await self._event(
            room,
            turn_number,
            TurnPhase.LLM_START,
            data={"llmProvider": agent.llm_provider, "llmModel": agent.llm_model},
        )
        messages = self.context.build_messages(room, agent, history)
        tools = build_debate_tools(
            self.store,
            self.memory,
            room,
            agent.id,
            search_limit=self.config.arena.memory_search_limit,
        )
        tuning = replace(agent.tuning, max_tokens=cap_max_tokens(agent.tuning.max_tokens, room.max_output_tokens))
        reply = await self.loop.run(agent, messages, tools, steps, tuning=tuning)
        await self._event(
            room,
            turn_number,
            TurnPhase.LLM_OK,
            TurnEventStatus.OK,
            {
                "replyChars": len(reply.text),
                "rounds": reply.rounds,
                "inputTokens": reply.input_tokens,
                "outputTokens": reply.output_tokens,
                "exited": reply.exited,
            },
        )
        logger.info(f"{agent.name} replied with {len(reply.text)} chars in {reply.rounds} round(s)")
        return reply

    async def _handle_llm_failure(
        self,
        room: Room,
        agent: Agent,
        turn_number: int,
        error: BaseException,
        steps: StepExecutor,
    ) -> None:
        label = _error_label(error)
        logger.error(f"Room {room.id} turn {turn_number}: {agent.name} failed to reply ({label}): {error}")
        await self._event(room, turn_number, TurnPhase.LLM_FAIL, TurnEventStatus.FAIL, {"error": label})
        posted = await self.notifier.notify(
            steps,
            room,
            "turn_failed",
            turn_number,
            f"⚠️ {agent.name} could not respond this turn ({label}). The debate moves on.",
        )
        await self._event(
            room,
            turn_number,
            TurnPhase.FINAL_FAILURE_NOTIFY,
            TurnEventStatus.OK if posted else TurnEventStatus.FAIL,
        )

    async def _persist_reply(self, room: Room, agent: Agent, turn_number: int, reply: TurnReply) -> StoredMessage:
        """
        Store the reply exactly as the thread will show it.

        The local copy has to match its synced copy for history dedup and the
        already-posted check, so text past the platform limit is cut here.
        """
        content = self.gateway.clip_message(reply.text)
        if content != reply.text:
            logger.warning(
                f"Room {room.id} turn {turn_number}: {agent.name}'s reply cut from {len(reply.text)} "
                f"to {len(content)} chars to fit the chat platform"
            )
        msg = StoredMessage(
            room_id=room.id,
            external_message_id=local_turn_id(room.id, turn_number),
            thread_id=room.thread_id,
            author_type=AuthorType.AGENT,
            author_agent_id=agent.id,
            author_name=agent.name,
            content=content,
            created_at_ms=now_ms(),
            reasoning_text=reply.reasoning_text,
            input_tokens=reply.input_tokens,
            output_tokens=reply.output_tokens,
            is_exit=reply.exited,
        )
        await self.store.insert_message_if_absent(msg)
        await self.store.trim_messages(room.id, raw_window_size(self.config.arena.history_limit))
        return await self.store.get_message(msg.external_message_id) or msg

    async def _post_reply(
        self,
        room: Room,
        ctx: _TurnContext,
        turn_number: int,
        reply: StoredMessage,
        raw: list[StoredMessage],
        fetched: list | None,
        reused: bool,
        steps: StepExecutor,
    ) -> None:
        agent = ctx.agent
        if ctx.webhook is None:
            logger.debug(f"Room {room.id}: no webhook for channel {room.parent_channel_id}, reply kept local")
            return
        if reused and reply_already_posted(reply, agent.name, raw, fetched, self.window):
            logger.debug(f"Room {room.id} turn {turn_number}: reply already on the thread, not posting again")
            return

        webhook = ctx.webhook
        try:
            posted = await steps.run(
                "post-to-discord",
                lambda: self.gateway.post_as_persona(webhook, room.thread_id, reply.content, agent.name, agent.avatar_url),
            )
        except StepFailed as e:
            await self._event(room, turn_number, TurnPhase.WEBHOOK_POST_FAIL, TurnEventStatus.FAIL, {"error": _error_label(e)})
            if e.retryable:
                raise
            logger.warning(f"Room {room.id} turn {turn_number}: reply not posted: {e}")
            return

        await self._event(room, turn_number, TurnPhase.WEBHOOK_POST_OK, TurnEventStatus.OK)
        synced = replace(reply, id=None, external_message_id=posted.id, created_at_ms=posted.created_at_ms, is_exit=False)
        await steps.run("store-synced-copy", lambda: self.store.upsert_synced_message(synced))

    async def _after_advance(
        self,
        room: Room,
        ctx: _TurnContext,
        turn_number: int,
        decision: AdvanceDecision,
        steps: StepExecutor,
    ) -> None:
        next_agent = ctx.agents.get(decision.next_agent_id or "")
        next_name = next_agent.name if next_agent else "the next speaker"

        if decision.status == RoomStatus.AUDIENCE_SLOT:
            duration = room.audience_slot_duration_seconds
            await self.notifier.set_locked(steps, room, False)
            await self.notifier.notify(
                steps,
                room,
                "audience_open",
                turn_number,
                f"🎤 Audience slot open for {duration}s. Share your questions and comments! Next up: {next_name}",
            )
            await self._event(room, turn_number, TurnPhase.AUDIENCE_SLOT_OPEN, data={"durationSeconds": duration})
        elif decision.stops:
            if decision.reason == "agent_exit":
                text = f"🏁 {ctx.agent.name} has ended the debate."
            else:
                text = f"🏁 The debate reached its limit of {room.max_turns} turns and has ended."
            await self.notifier.notify(steps, room, "debate_end", turn_number, text)

    async def _event(
        self,
        room: Room,
        turn_number: int,
        phase: TurnPhase,
        status: TurnEventStatus = TurnEventStatus.INFO,
        data: dict | None = None,
    ) -> None:
        await self.events.write(room.id, turn_number, phase, status, data)
