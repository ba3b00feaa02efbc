"""Room store: rooms, agents, participants, webhook bindings and messages."""

from __future__ import annotations

from loguru import logger

from agon.store.database import Database, store_op
from agon.store.models import (
    Agent,
    Participant,
    Room,
    RoomStatus,
    StoredMessage,
    WebhookBinding,
    now_ms,
)

_MESSAGE_COLUMNS = (
    "room_id, external_message_id, thread_id, author_type, author_agent_id, author_name, "
    "content, reasoning_text, input_tokens, output_tokens, is_exit, created_at_ms"
)


def _message_params(msg: StoredMessage) -> tuple:
    return (
        msg.room_id,
        msg.external_message_id,
        msg.thread_id,
        msg.author_type.value,
        msg.author_agent_id,
        msg.author_name,
        msg.content,
        msg.reasoning_text,
        msg.input_tokens,
        msg.output_tokens,
        int(msg.is_exit),
        msg.created_at_ms,
    )


class RoomStore:
    """
    Typed access to the relational state of every debate.

    All methods raise ``StoreError`` on datastore failure. Room transitions are
    conditional updates keyed on the expected turn number or status, so a
    redelivered job that lost the race changes nothing.
    """

    def __init__(self, db: Database):
        self.db = db

    # ── rooms ────────────────────────────────────────────────────────────

    @store_op
    async def get_room(self, room_id: int) -> Room | None:
        row = await self.db.fetchone("SELECT * FROM rooms WHERE id = ?", (room_id,))
        return Room.from_row(row) if row else None

    @store_op
    async def list_rooms(self, statuses: list[RoomStatus] | None = None) -> list[Room]:
        if not statuses:
            rows = await self.db.fetchall("SELECT * FROM rooms ORDER BY id")
        else:
            marks = ", ".join("?" for _ in statuses)
            rows = await self.db.fetchall(
                f"SELECT * FROM rooms WHERE status IN ({marks}) ORDER BY id",
                tuple(s.value for s in statuses),
            )
        return [Room.from_row(r) for r in rows]

    @store_op
    async def open_room(
        self,
        *,
        parent_channel_id: str,
        thread_id: str,
        topic: str,
        title: str,
        agent_ids: list[str],
        max_turns: int,
        audience_slot_duration_seconds: int = 0,
        max_input_tokens: int | None = None,
        max_output_tokens: int | None = None,
    ) -> Room:
        """
        Create the room bound to ``thread_id``, or restart it from scratch.

        Participants follow the order of ``agent_ids``. The room starts active
        at turn 0 with the first agent up; history and summary are cleared.
        """
        if not agent_ids:
            raise ValueError("A room needs at least one agent")
        ts = now_ms()
        async with self.db.transaction() as conn:
            async with conn.execute("SELECT id FROM rooms WHERE thread_id = ?", (thread_id,)) as cur:
                existing = await cur.fetchone()
            if existing:
                room_id = existing["id"]
                await conn.execute(
                    """
                    UPDATE rooms SET status = ?, topic = ?, title = ?, parent_channel_id = ?,
                        current_turn_number = 0, current_turn_agent_id = ?, last_enqueued_turn_number = 0,
                        max_turns = ?, audience_slot_duration_seconds = ?, max_input_tokens = ?,
                        max_output_tokens = ?, summary_md = NULL, summary_updated_at_ms = NULL,
                        updated_at_ms = ?
                    WHERE id = ?
                    """,
                    (
                        RoomStatus.ACTIVE.value, topic, title, parent_channel_id, agent_ids[0],
                        max_turns, audience_slot_duration_seconds, max_input_tokens,
                        max_output_tokens, ts, room_id,
                    ),
                )
                await conn.execute("DELETE FROM room_agents WHERE room_id = ?", (room_id,))
                await conn.execute("DELETE FROM messages WHERE room_id = ?", (room_id,))
            else:
                cur = await conn.execute(
                    """
                    INSERT INTO rooms (status, topic, title, parent_channel_id, thread_id,
                        current_turn_agent_id, max_turns, audience_slot_duration_seconds,
                        max_input_tokens, max_output_tokens, created_at_ms, updated_at_ms)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        RoomStatus.ACTIVE.value, topic, title, parent_channel_id, thread_id,
                        agent_ids[0], max_turns, audience_slot_duration_seconds,
                        max_input_tokens, max_output_tokens, ts, ts,
                    ),
                )
                room_id = cur.lastrowid
            await conn.executemany(
                "INSERT INTO room_agents (room_id, agent_id, turn_order) VALUES (?, ?, ?)",
                [(room_id, agent_id, order) for order, agent_id in enumerate(agent_ids)],
            )
        room = await self.get_room(room_id)
        assert room is not None
        logger.info(f"Room {room_id} opened on thread {thread_id} with {len(agent_ids)} agents")
        return room

    @store_op
    async def set_status(
        self,
        room_id: int,
        status: RoomStatus,
        *,
        expected: RoomStatus | None = None,
    ) -> bool:
        """Set the room status, optionally only when it currently equals ``expected``."""
        sql = "UPDATE rooms SET status = ?, updated_at_ms = ? WHERE id = ?"
        params: tuple = (status.value, now_ms(), room_id)
        if expected is not None:
            sql += " AND status = ?"
            params += (expected.value,)
        return await self.db.write(sql, params) > 0

    @store_op
    async def advance_room(
        self,
        room_id: int,
        *,
        expected_turn: int,
        turn_number: int,
        status: RoomStatus,
        next_agent_id: str | None,
    ) -> bool:
        """
        Record that ``turn_number`` finished and who speaks next.

        Applies only while the room is still active at ``expected_turn``; a
        manual pause or a concurrent worker that got there first wins.
        """
        rows = await self.db.write(
            """
            UPDATE rooms
            SET current_turn_number = ?, current_turn_agent_id = ?, status = ?,
                last_enqueued_turn_number = MAX(last_enqueued_turn_number, ?), updated_at_ms = ?
            WHERE id = ? AND current_turn_number = ? AND status = ?
            """,
            (
                turn_number, next_agent_id, status.value, turn_number, now_ms(),
                room_id, expected_turn, RoomStatus.ACTIVE.value,
            ),
        )
        return rows > 0

    @store_op
    async def mark_enqueued(self, room_id: int, turn_number: int) -> None:
        """Raise the enqueue marker to ``turn_number``. Never lowers it."""
        await self.db.write(
            "UPDATE rooms SET last_enqueued_turn_number = MAX(last_enqueued_turn_number, ?) WHERE id = ?",
            (turn_number, room_id),
        )

    @store_op
    async def set_summary_if_missing(self, room_id: int, summary_md: str) -> bool:
        rows = await self.db.write(
            "UPDATE rooms SET summary_md = ?, summary_updated_at_ms = ? WHERE id = ? AND summary_md IS NULL",
            (summary_md, now_ms(), room_id),
        )
        return rows > 0

    # ── agents ───────────────────────────────────────────────────────────

    @store_op
    async def get_agent(self, agent_id: str) -> Agent | None:
        row = await self.db.fetchone("SELECT * FROM agents WHERE id = ?", (agent_id,))
        return Agent.from_row(row) if row else None

    @store_op
    async def list_agents(self) -> list[Agent]:
        rows = await self.db.fetchall("SELECT * FROM agents ORDER BY name")
        return [Agent.from_row(r) for r in rows]

    @store_op
    async def upsert_agent(self, agent: Agent) -> None:
        await self.db.write(
            """
            INSERT INTO agents (id, name, avatar_url, system_prompt, llm_provider, llm_model,
                temperature, max_tokens, reasoning_level, thinking_budget_tokens)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name, avatar_url = excluded.avatar_url,
                system_prompt = excluded.system_prompt, llm_provider = excluded.llm_provider,
                llm_model = excluded.llm_model, temperature = excluded.temperature,
                max_tokens = excluded.max_tokens, reasoning_level = excluded.reasoning_level,
                thinking_budget_tokens = excluded.thinking_budget_tokens
            """,
            (
                agent.id, agent.name, agent.avatar_url, agent.system_prompt,
                agent.llm_provider, agent.llm_model, agent.tuning.temperature,
                agent.tuning.max_tokens, agent.tuning.reasoning_level,
                agent.tuning.thinking_budget_tokens,
            ),
        )

    @store_op
    async def list_participants(self, room_id: int) -> list[Participant]:
        rows = await self.db.fetchall(
            "SELECT room_id, agent_id, turn_order FROM room_agents WHERE room_id = ? ORDER BY turn_order",
            (room_id,),
        )
        return [Participant(room_id=r["room_id"], agent_id=r["agent_id"], turn_order=r["turn_order"]) for r in rows]

    @store_op
    async def list_room_agents(self, room_id: int) -> list[Agent]:
        rows = await self.db.fetchall(
            """
            SELECT a.* FROM room_agents ra JOIN agents a ON a.id = ra.agent_id
            WHERE ra.room_id = ? ORDER BY ra.turn_order
            """,
            (room_id,),
        )
        return [Agent.from_row(r) for r in rows]

    # ── webhooks ─────────────────────────────────────────────────────────

    @store_op
    async def get_webhook(self, channel_id: str) -> WebhookBinding | None:
        row = await self.db.fetchone("SELECT * FROM discord_channels WHERE channel_id = ?", (channel_id,))
        if not row:
            return None
        return WebhookBinding(
            channel_id=row["channel_id"],
            webhook_id=row["webhook_id"],
            webhook_token=row["webhook_token"],
        )

    @store_op
    async def bind_webhook(self, binding: WebhookBinding) -> None:
        await self.db.write(
            """
            INSERT INTO discord_channels (channel_id, webhook_id, webhook_token) VALUES (?, ?, ?)
            ON CONFLICT(channel_id) DO UPDATE SET
                webhook_id = excluded.webhook_id, webhook_token = excluded.webhook_token
            """,
            (binding.channel_id, binding.webhook_id, binding.webhook_token),
        )

    # ── messages ─────────────────────────────────────────────────────────

    @store_op
    async def upsert_synced_message(self, msg: StoredMessage) -> None:
        """Insert a platform message or refresh the stored copy with the same external id."""
        await self.db.write(
            f"""
            INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(external_message_id) DO UPDATE SET
                author_type = excluded.author_type,
                author_agent_id = COALESCE(excluded.author_agent_id, messages.author_agent_id),
                author_name = excluded.author_name,
                content = excluded.content
            """,
            _message_params(msg),
        )

    @store_op
    async def insert_message_if_absent(self, msg: StoredMessage) -> bool:
        """Insert-or-ignore by external id. Returns True when a row was written."""
        new_id = await self.db.insert(
            f"INSERT OR IGNORE INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            _message_params(msg),
        )
        return new_id is not None

    @store_op
    async def get_message(self, external_message_id: str) -> StoredMessage | None:
        row = await self.db.fetchone(
            "SELECT * FROM messages WHERE external_message_id = ?",
            (external_message_id,),
        )
        return StoredMessage.from_row(row) if row else None

    @store_op
    async def recent_messages(self, room_id: int, limit: int) -> list[StoredMessage]:
        """Newest ``limit`` messages of the room, returned oldest first."""
        rows = await self.db.fetchall(
            "SELECT * FROM messages WHERE room_id = ? ORDER BY created_at_ms DESC, id DESC LIMIT ?",
            (room_id, limit),
        )
        return [StoredMessage.from_row(r) for r in reversed(rows)]

    @store_op
    async def all_messages(self, room_id: int) -> list[StoredMessage]:
        rows = await self.db.fetchall(
            "SELECT * FROM messages WHERE room_id = ? ORDER BY created_at_ms, id",
            (room_id,),
        )
        return [StoredMessage.from_row(r) for r in rows]

    @store_op
    async def last_message_at(self, room_id: int) -> int | None:
        row = await self.db.fetchone("SELECT MAX(created_at_ms) AS ts FROM messages WHERE room_id = ?", (room_id,))
        return row["ts"] if row else None

    @store_op
    async def trim_messages(self, room_id: int, keep: int) -> int:
        """Delete all but the newest ``keep`` messages of the room."""
        return await self.db.write(
            """
            DELETE FROM messages WHERE room_id = ? AND id NOT IN (
                SELECT id FROM messages WHERE room_id = ?
                ORDER BY created_at_ms DESC, id DESC LIMIT ?
            )
            """,
            (room_id, room_id, keep),
        )
