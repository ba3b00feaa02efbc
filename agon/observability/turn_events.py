"""Append-only per-turn telemetry. Writes never fail a turn."""

from __future__ import annotations

import json
import sqlite3
from enum import Enum
from typing import Any

from loguru import logger

from agon.errors import StoreError
from agon.store.database import Database
from agon.store.models import now_ms


class TurnPhase(str, Enum):
    START = "start"
    DISCORD_SYNC = "discord_sync"
    LLM_START = "llm_start"
    LLM_OK = "llm_ok"
    LLM_FAIL = "llm_fail"
    WEBHOOK_POST_OK = "webhook_post_ok"
    WEBHOOK_POST_FAIL = "webhook_post_fail"
    AUDIENCE_SLOT_OPEN = "audience_slot_open"
    AUDIENCE_SLOT_CLOSE = "audience_slot_close"
    FINAL_FAILURE_NOTIFY = "final_failure_notify"
    FINISH = "finish"


class TurnEventStatus(str, Enum):
    INFO = "info"
    OK = "ok"
    FAIL = "fail"


class TurnEventWriter:
    """Records what happened during each turn for later inspection."""

    def __init__(self, db: Database):
        self.db = db

    async def write(
        self,
        room_id: int,
        turn_number: int,
        phase: TurnPhase,
        status: TurnEventStatus = TurnEventStatus.INFO,
        data: dict[str, Any] | None = None,
    ) -> bool:
        try:
            await self.db.insert(
                "INSERT INTO room_turn_events (room_id, turn_number, phase, status, created_at_ms, data_json) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    room_id,
                    turn_number,
                    phase.value,
                    status.value,
                    now_ms(),
                    json.dumps(data, ensure_ascii=False, default=str) if data else None,
                ),
            )
            return True
        except (sqlite3.Error, StoreError) as e:
            logger.warning(f"Failed to record turn event {phase.value} for room {room_id}: {e}")
            return False

    async def list_events(self, room_id: int, limit: int = 100) -> list[dict[str, Any]]:
        rows = await self.db.fetchall(
            "SELECT * FROM room_turn_events WHERE room_id = ? ORDER BY id DESC LIMIT ?",
            (room_id, limit),
        )
        events = []
        for r in reversed(rows):
            item = dict(r)
            item["data"] = json.loads(item.pop("data_json") or "null")
            events.append(item)
        return events
