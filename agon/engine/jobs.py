"""Queue job types and their JSON wire format."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TurnJob:
    room_id: int
    turn_number: int

    @property
    def dedup_key(self) -> str:
        return f"turn:{self.room_id}:{self.turn_number}"

    def to_payload(self) -> dict[str, Any]:
        return {"type": "turn", "roomId": self.room_id, "turnNumber": self.turn_number}


@dataclass(frozen=True)
class CloseAudienceSlotJob:
    room_id: int
    turn_number: int
    delay_seconds: int

    @property
    def dedup_key(self) -> str:
        return f"close_audience_slot:{self.room_id}:{self.turn_number}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "close_audience_slot",
            "roomId": self.room_id,
            "turnNumber": self.turn_number,
            "delaySeconds": self.delay_seconds,
        }


@dataclass(frozen=True)
class FinalizeRoomJob:
    room_id: int

    @property
    def dedup_key(self) -> str:
        return f"finalize_room:{self.room_id}"

    def to_payload(self) -> dict[str, Any]:
        return {"type": "finalize_room", "roomId": self.room_id}


Job = TurnJob | CloseAudienceSlotJob | FinalizeRoomJob


class InvalidJob(ValueError):
    pass


def parse_job(raw: str | bytes | dict[str, Any]) -> Job:
    """Decode a queue body. Untyped bodies are turn jobs."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidJob(f"job body is not JSON: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidJob("job body must be an object")

    kind = raw.get("type", "turn")
    try:
        room_id = int(raw["roomId"])
        if kind == "turn":
            return TurnJob(room_id=room_id, turn_number=int(raw["turnNumber"]))
        if kind == "close_audience_slot":
            return CloseAudienceSlotJob(
                room_id=room_id,
                turn_number=int(raw["turnNumber"]),
                delay_seconds=int(raw.get("delaySeconds", 0)),
            )
        if kind == "finalize_room":
            return FinalizeRoomJob(room_id=room_id)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidJob(f"malformed {kind} job: {raw}") from e
    raise InvalidJob(f"unknown job type '{kind}'")


def encode_job(job: Job) -> str:
    return json.dumps(job.to_payload())
