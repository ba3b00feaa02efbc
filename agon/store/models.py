"""Row types for rooms, agents, participants and messages."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


class RoomStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    AUDIENCE_SLOT = "audience_slot"


class AuthorType(str, Enum):
    MODERATOR = "moderator"
    AGENT = "agent"
    AUDIENCE = "audience"
    NOTIFICATION = "notification"


LOCAL_TURN_PREFIX = "local-turn:"


def local_turn_id(room_id: int, turn_number: int) -> str:
    """External id of a reply written before (or instead of) its platform copy."""
    return f"{LOCAL_TURN_PREFIX}{room_id}:{turn_number}"


def local_notification_id(kind: str, room_id: int, turn_number: int) -> str:
    return f"local-notification:{kind}:{room_id}:{turn_number}"


def is_local_turn_id(external_id: str) -> bool:
    return external_id.startswith(LOCAL_TURN_PREFIX)


@dataclass
class Room:
    id: int
    status: RoomStatus
    topic: str
    title: str
    parent_channel_id: str
    thread_id: str
    current_turn_number: int = 0
    current_turn_agent_id: str | None = None
    last_enqueued_turn_number: int = 0
    max_turns: int = 30
    audience_slot_duration_seconds: int = 0
    max_input_tokens: int | None = None
    max_output_tokens: int | None = None
    summary_md: str | None = None
    summary_updated_at_ms: int | None = None
    created_at_ms: int = 0
    updated_at_ms: int = 0

    @classmethod
    def from_row(cls, row: Any) -> "Room":
        data = dict(row)
        data["status"] = RoomStatus(data["status"])
        return cls(**data)


@dataclass
class AgentTuning:
    """Optional per-agent generation settings."""
    temperature: float | None = None
    max_tokens: int | None = None
    reasoning_level: str | None = None  # low | medium | high
    thinking_budget_tokens: int | None = None


@dataclass
class Agent:
    id: str
    name: str
    system_prompt: str
    llm_provider: str
    llm_model: str
    avatar_url: str | None = None
    tuning: AgentTuning = field(default_factory=AgentTuning)

    @classmethod
    def from_row(cls, row: Any) -> "Agent":
        return cls(
            id=row["id"],
            name=row["name"],
            system_prompt=row["system_prompt"] or "",
            llm_provider=row["llm_provider"],
            llm_model=row["llm_model"],
            avatar_url=row["avatar_url"],
            tuning=AgentTuning(
                temperature=row["temperature"],
                max_tokens=row["max_tokens"],
                reasoning_level=row["reasoning_level"],
                thinking_budget_tokens=row["thinking_budget_tokens"],
            ),
        )


@dataclass
class Participant:
    room_id: int
    agent_id: str
    turn_order: int


@dataclass
class WebhookBinding:
    channel_id: str
    webhook_id: str
    webhook_token: str


@dataclass
class StoredMessage:
    room_id: int
    external_message_id: str
    thread_id: str
    author_type: AuthorType
    content: str
    created_at_ms: int
    author_agent_id: str | None = None
    author_name: str | None = None
    reasoning_text: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    is_exit: bool = False
    id: int | None = None

    @property
    def is_local(self) -> bool:
        return is_local_turn_id(self.external_message_id)

    @classmethod
    def from_row(cls, row: Any) -> "StoredMessage":
        data = dict(row)
        data["author_type"] = AuthorType(data["author_type"])
        data["is_exit"] = bool(data.get("is_exit"))
        return cls(**data)
