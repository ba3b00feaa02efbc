"""Per-agent long-term memory with lightweight lexical recall."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass

from agon.store.database import Database, store_op
from agon.store.models import now_ms

STOPWORDS = {
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "was", "one",
    "our", "out", "has", "have", "had", "this", "that", "with", "from", "they", "them",
    "what", "when", "which", "will", "would", "there", "their", "about", "into", "than",
}


@dataclass
class MemoryItem:
    id: str
    agent_id: str
    room_id: int | None
    content: str
    created_by: str
    created_at_ms: int
    score: int = 0


def tokenize(text: str) -> set[str]:
    """Tokenize text for lightweight lexical matching."""
    tokens = re.findall(r"[a-zA-Z0-9]{3,}", (text or "").lower().replace("_", " "))
    return {token for token in tokens if token not in STOPWORDS}


class MemoryStore:
    """Memories agents keep across debates, plus access to room summaries."""

    def __init__(self, db: Database):
        self.db = db

    @store_op
    async def insert_memories(
        self,
        agent_id: str,
        contents: list[str],
        *,
        room_id: int | None = None,
        created_by: str = "agent",
    ) -> int:
        """Store non-empty, not-yet-known memories. Returns how many were added."""
        existing = {
            r["content"].strip().lower()
            for r in await self.db.fetchall("SELECT content FROM memories WHERE agent_id = ?", (agent_id,))
        }
        rows = []
        ts = now_ms()
        for content in contents:
            text = (content or "").strip()
            if not text or text.lower() in existing:
                continue
            existing.add(text.lower())
            rows.append((uuid.uuid4().hex, agent_id, room_id, text, created_by, ts))
        if not rows:
            return 0
        async with self.db.transaction() as conn:
            await conn.executemany(
                "INSERT INTO memories (id, agent_id, room_id, content, created_by, created_at_ms) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    @store_op
    async def search_memories(self, agent_id: str, query: str, limit: int = 8) -> list[MemoryItem]:
        """Rank the agent's memories by term overlap with ``query``, newest first on ties."""
        query_terms = tokenize(query)
        rows = await self.db.fetchall(
            "SELECT * FROM memories WHERE agent_id = ? ORDER BY created_at_ms DESC",
            (agent_id,),
        )
        items = [
            MemoryItem(
                id=r["id"],
                agent_id=r["agent_id"],
                room_id=r["room_id"],
                content=r["content"],
                created_by=r["created_by"],
                created_at_ms=r["created_at_ms"],
            )
            for r in rows
        ]
        if not query_terms:
            return items[:limit]

        scored: list[MemoryItem] = []
        for item in items:
            text_terms = tokenize(item.content)
            overlap = len(query_terms & text_terms)
            if overlap == 0:
                continue
            lexical_ratio = overlap / max(1, len(query_terms))
            similarity = overlap / max(1, len(query_terms | text_terms))
            item.score = int(overlap * 90 + lexical_ratio * 70 + similarity * 80)
            scored.append(item)

        scored.sort(key=lambda item: (-item.score, -item.created_at_ms, item.id))
        return scored[:limit]

    @store_op
    async def get_thread_summary(self, room_id: int) -> str | None:
        row = await self.db.fetchone("SELECT summary_md FROM rooms WHERE id = ?", (room_id,))
        return row["summary_md"] if row else None
