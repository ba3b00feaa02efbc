"""Tools available to debaters: memory, thread reading and leaving the debate."""

from typing import Any

from agon.agent.tools.base import Tool
from agon.agent.tools.registry import ToolRegistry
from agon.store.memory import MemoryStore
from agon.store.models import AuthorType, Room
from agon.store.rooms import RoomStore

EXIT_DEBATE = "exit_debate"


class MemoryAddTool(Tool):
    """Save durable notes the agent wants to carry into future debates."""

    name = "memory_add"
    description = "Save one or more short facts or positions to your long-term memory."
    parameters = {
        "type": "object",
        "properties": {
            "memories": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Atomic facts to remember, one per item",
            },
        },
        "required": ["memories"],
    }

    def __init__(self, memory: MemoryStore, agent_id: str, room_id: int):
        self.memory = memory
        self.agent_id = agent_id
        self.room_id = room_id

    async def execute(self, memories: list[str] | str | None = None, **kwargs: Any) -> str:
        if isinstance(memories, str):
            memories = [memories]
        items = [m for m in (memories or []) if isinstance(m, str) and m.strip()]
        if not items:
            return "Error: memories must be a non-empty list of strings."
        added = await self.memory.insert_memories(self.agent_id, items, room_id=self.room_id)
        return f"Saved {added} new memories ({len(items) - added} already known)."


class MemorySearchTool(Tool):
    name = "memory_search"
    description = "Search your long-term memory for facts related to a query."
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "What to look for"},
        },
        "required": ["query"],
    }

    def __init__(self, memory: MemoryStore, agent_id: str, limit: int = 8):
        self.memory = memory
        self.agent_id = agent_id
        self.limit = limit

    async def execute(self, query: str | None = None, **kwargs: Any) -> str:
        text = (query or "").strip()
        if not text:
            return "Error: query is required."
        items = await self.memory.search_memories(self.agent_id, text, limit=self.limit)
        if not items:
            return "No matching memories."
        return "\n".join(f"- {item.content}" for item in items)


class ThreadReadTool(Tool):
    """Re-read the thread beyond what the prompt window shows."""

    name = "thread_read"
    description = "Read recent messages of this debate thread, oldest first."
    parameters = {
        "type": "object",
        "properties": {
            "limit": {
                "type": "integer",
                "description": "Number of messages (1-100)",
                "minimum": 1,
                "maximum": 100,
            },
        },
    }

    def __init__(self, store: RoomStore, memory: MemoryStore, room: Room):
        self.store = store
        self.memory = memory
        self.room = room

    async def execute(self, limit: int = 30, **kwargs: Any) -> str:
        try:
            count = max(1, min(int(limit), 100))
        except (TypeError, ValueError):
            return "Error: limit must be an integer."
        messages = await self.store.recent_messages(self.room.id, count)
        lines = [f"Room title: {self.room.title}", f"Topic: {self.room.topic}"]
        summary = await self.memory.get_thread_summary(self.room.id)
        if summary:
            lines.append(f"Summary so far:\n{summary}")
        for m in messages:
            if m.author_type == AuthorType.NOTIFICATION:
                continue
            lines.append(f"[{m.author_name or m.author_type.value}] {m.content}")
        return "\n".join(lines)


class ExitDebateTool(Tool):
    name = EXIT_DEBATE
    description = "End the debate and provide a final summary of key conclusions."
    parameters = {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
        },
        "required": ["summary"],
        "additionalProperties": False,
    }

    async def execute(self, summary: str = "", **kwargs: Any) -> str:
        return summary


def build_debate_tools(
    store: RoomStore,
    memory: MemoryStore,
    room: Room,
    agent_id: str,
    search_limit: int = 8,
) -> ToolRegistry:
    """Fresh registry bound to one room and one agent."""
    registry = ToolRegistry()
    registry.register(MemoryAddTool(memory, agent_id, room.id))
    registry.register(MemorySearchTool(memory, agent_id, limit=search_limit))
    registry.register(ThreadReadTool(store, memory, room))
    registry.register(ExitDebateTool())
    return registry
