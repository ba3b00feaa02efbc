"""Post-debate summary and memory extraction."""

from __future__ import annotations

import json
import re
from typing import Any

from loguru import logger

from agon.config.schema import FinalizeConfig
from agon.errors import ArenaError
from agon.providers.base import GenerateRequest, LLMProvider
from agon.store.memory import MemoryStore
from agon.store.models import Agent, AuthorType, Room, StoredMessage
from agon.store.rooms import RoomStore

SUMMARY_PROMPT = "Summarize this debate. Include key arguments, conclusions, and open questions. Return markdown."

_FENCE_RE = re.compile(r"^```(?:json)?\s*([\s\S]*?)\s*```\s*$", re.IGNORECASE)


def strip_code_fences(raw: str) -> str:
    text = raw.strip()
    match = _FENCE_RE.match(text)
    return match.group(1).strip() if match else text


def extract_json_array(raw: str) -> Any:
    """Parse a JSON array from model output, salvaging it from surrounding prose if needed."""
    text = strip_code_fences(raw)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("["), text.rfind("]")
        if start >= 0 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                return None
        return None


def normalize_memories(parsed: Any, limit: int = 15) -> list[str]:
    if not isinstance(parsed, list):
        return []
    out: list[str] = []
    for item in parsed:
        content = item.get("content") if isinstance(item, dict) else item if isinstance(item, str) else None
        if not isinstance(content, str) or not content.strip():
            continue
        out.append(content.strip())
        if len(out) >= limit:
            break
    return out


def room_transcript(room: Room, agents: dict[str, str], messages: list[StoredMessage], max_chars: int = 50_000) -> str:
    """Plain-text transcript keeping the end when it is too long."""
    lines = [f"Room title: {room.title}", f"Topic: {room.topic}", ""]
    for m in messages:
        if m.author_type == AuthorType.NOTIFICATION:
            continue
        if m.author_type == AuthorType.AGENT:
            author = agents.get(m.author_agent_id or "") or m.author_name or "Agent"
        elif m.author_type == AuthorType.MODERATOR:
            author = "Moderator"
        else:
            author = m.author_name or "Audience"
        lines.append(f"{author}: {m.content}")
    joined = "\n".join(lines)
    return joined if len(joined) <= max_chars else f"…(truncated)…\n\n{joined[-max_chars:]}"


class RoomFinalizer:
    """
    Handles ``finalize_room`` jobs.

    Writes the room summary once, then asks the model for each participant's
    takeaways and stores them as automatic memories. Every part is
    best-effort: a failure is logged and the next part still runs.
    """

    def __init__(
        self,
        config: FinalizeConfig,
        store: RoomStore,
        memory: MemoryStore,
        provider: LLMProvider,
    ):
        self.config = config
        self.store = store
        self.memory = memory
        self.provider = provider

    async def finalize(self, room_id: int) -> dict[str, int]:
        """Returns how many memories were stored per agent id."""
        if not self.config.enabled:
            return {}
        room = await self.store.get_room(room_id)
        if room is None:
            logger.warning(f"finalize_room: room {room_id} not found")
            return {}

        agents = await self.store.list_room_agents(room.id)
        messages = await self.store.all_messages(room.id)
        names = {a.id: a.name for a in agents}
        transcript = room_transcript(room, names, messages, self.config.transcript_chars)

        summary = room.summary_md
        if summary is None:
            summary = await self._summarize(room, transcript)

        inserted: dict[str, int] = {}
        for agent in agents:
            inserted[agent.id] = await self._extract_memories(room, agent, messages, summary)
            logger.info(f"finalize_room: room {room.id} stored {inserted[agent.id]} memories for {agent.name}")
        return inserted

    async def _generate(self, system: str, user: str) -> str:
        response = await self.provider.generate(
            GenerateRequest(
                provider=self.config.provider,
                model=self.config.model,
                messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
            )
        )
        return (response.content or "").strip()

    async def _summarize(self, room: Room, transcript: str) -> str | None:
        try:
            summary = await self._generate(SUMMARY_PROMPT, transcript)
            if not summary:
                return None
            updated = await self.store.set_summary_if_missing(room.id, summary)
            logger.info(f"finalize_room: summary generated for room {room.id} (updated={updated})")
        except ArenaError as e:
            logger.warning(f"finalize_room: summary failed for room {room.id}: {e}")
            return None
        refreshed = await self.store.get_room(room.id)
        return refreshed.summary_md if refreshed else summary

    async def _extract_memories(
        self,
        room: Room,
        agent: Agent,
        messages: list[StoredMessage],
        summary: str | None,
    ) -> int:
        # A reply can be stored twice (local and synced copy).
        own = "\n\n".join(
            dict.fromkeys(
                m.content for m in messages if m.author_type == AuthorType.AGENT and m.author_agent_id == agent.id
            )
        )
        parts = [f"Room title: {room.title}", f"Topic: {room.topic}"]
        if summary:
            parts.append(f"\nRoom summary:\n{summary}")
        parts.append("\nAgent messages:\n" + (own.strip() or "(none)"))
        user = "\n".join(parts)
        limit = self.config.agent_transcript_chars
        if len(user) > limit:
            user = user[-limit:]

        system = (
            f"Extract atomic knowledge facts from this debate from the perspective of {agent.name}. "
            "Only topic knowledge, no social observations. "
            f'Return JSON array: [{{"content": "fact"}}]. Max {self.config.max_memories_per_agent} items.'
        )
        try:
            raw = await self._generate(system, user)
            memories = normalize_memories(extract_json_array(raw), self.config.max_memories_per_agent)
            if not memories:
                return 0
            return await self.memory.insert_memories(agent.id, memories, room_id=room.id, created_by="auto")
        except ArenaError as e:
            logger.warning(f"finalize_room: memory extraction failed for {agent.name} in room {room.id}: {e}")
            return 0
