"""Durable at-least-once job queue stored next to the room data."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

from agon.store.database import Database, store_op
from agon.store.models import now_ms


@dataclass
class QueuedJob:
    id: int
    payload: dict[str, Any]
    attempts: int


class JobQueue:
    """
    SQLite-backed job queue.

    A received job is leased, not removed: it is deleted by ``ack`` and made
    visible again by ``nack`` or when its lease runs out, so a worker that
    dies mid-job never loses it. ``dedup_key`` keeps a second copy of a job
    out while the first is still pending.
    """

    def __init__(self, db: Database, lease_seconds: int = 3 * 60 * 60):
        self.db = db
        self.lease_ms = lease_seconds * 1000

    @store_op
    async def send(
        self,
        payload: dict[str, Any],
        *,
        delay_seconds: float = 0,
        dedup_key: str | None = None,
    ) -> bool:
        """Enqueue a job. Returns False when a pending job with the same key exists."""
        ts = now_ms()
        new_id = await self.db.insert(
            "INSERT OR IGNORE INTO jobs (dedup_key, body, available_at_ms, created_at_ms) VALUES (?, ?, ?, ?)",
            (dedup_key, json.dumps(payload), ts + int(delay_seconds * 1000), ts),
        )
        if new_id is None:
            logger.debug(f"Job {dedup_key} already pending, not enqueued again")
            return False
        return True

    @store_op
    async def receive(self) -> QueuedJob | None:
        """Lease the oldest available job, if any."""
        ts = now_ms()
        async with self.db.transaction() as conn:
            async with conn.execute(
                """
                SELECT id, body, attempts FROM jobs
                WHERE available_at_ms <= ? AND (leased_until_ms IS NULL OR leased_until_ms <= ?)
                ORDER BY available_at_ms, id LIMIT 1
                """,
                (ts, ts),
            ) as cur:
                row = await cur.fetchone()
            if row is None:
                return None
            await conn.execute(
                "UPDATE jobs SET leased_until_ms = ?, attempts = attempts + 1 WHERE id = ?",
                (ts + self.lease_ms, row["id"]),
            )
        try:
            payload = json.loads(row["body"])
        except json.JSONDecodeError:
            payload = {"_raw": row["body"]}
        return QueuedJob(id=row["id"], payload=payload, attempts=row["attempts"] + 1)

    @store_op
    async def ack(self, job_id: int) -> None:
        await self.db.write("DELETE FROM jobs WHERE id = ?", (job_id,))

    @store_op
    async def nack(self, job_id: int, delay_seconds: float = 0) -> None:
        """Release the lease so the job is delivered again after ``delay_seconds``."""
        await self.db.write(
            "UPDATE jobs SET leased_until_ms = NULL, available_at_ms = ? WHERE id = ?",
            (now_ms() + int(delay_seconds * 1000), job_id),
        )

    @store_op
    async def pending(self) -> list[QueuedJob]:
        """All queued jobs, leased or not, oldest first."""
        rows = await self.db.fetchall("SELECT id, body, attempts FROM jobs ORDER BY available_at_ms, id")
        return [QueuedJob(id=r["id"], payload=json.loads(r["body"]), attempts=r["attempts"]) for r in rows]
