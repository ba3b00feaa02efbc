"""SQLite connection and schema for the arena store."""

from __future__ import annotations

import asyncio
import functools
import sqlite3
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, ParamSpec, TypeVar

import aiosqlite
from loguru import logger

from agon.errors import StoreError

P = ParamSpec("P")
T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS rooms (
    id                             INTEGER PRIMARY KEY AUTOINCREMENT,
    status                         TEXT NOT NULL DEFAULT 'paused',
    topic                          TEXT NOT NULL DEFAULT '',
    title                          TEXT NOT NULL DEFAULT '',
    parent_channel_id              TEXT NOT NULL,
    thread_id                      TEXT NOT NULL UNIQUE,
    current_turn_number            INTEGER NOT NULL DEFAULT 0,
    current_turn_agent_id          TEXT,
    last_enqueued_turn_number      INTEGER NOT NULL DEFAULT 0,
    max_turns                      INTEGER NOT NULL DEFAULT 30,
    audience_slot_duration_seconds INTEGER NOT NULL DEFAULT 0,
    max_input_tokens               INTEGER,
    max_output_tokens              INTEGER,
    summary_md                     TEXT,
    summary_updated_at_ms          INTEGER,
    created_at_ms                  INTEGER NOT NULL,
    updated_at_ms                  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS agents (
    id                     TEXT PRIMARY KEY,
    name                   TEXT NOT NULL,
    avatar_url             TEXT,
    system_prompt          TEXT NOT NULL DEFAULT '',
    llm_provider           TEXT NOT NULL,
    llm_model              TEXT NOT NULL,
    temperature            REAL,
    max_tokens             INTEGER,
    reasoning_level        TEXT,
    thinking_budget_tokens INTEGER
);

CREATE TABLE IF NOT EXISTS room_agents (
    room_id    INTEGER NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
    agent_id   TEXT NOT NULL REFERENCES agents(id),
    turn_order INTEGER NOT NULL,
    UNIQUE (room_id, agent_id),
    UNIQUE (room_id, turn_order)
);

CREATE TABLE IF NOT EXISTS discord_channels (
    channel_id    TEXT PRIMARY KEY,
    webhook_id    TEXT NOT NULL,
    webhook_token TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id             INTEGER NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
    external_message_id TEXT NOT NULL UNIQUE,
    thread_id           TEXT NOT NULL,
    author_type         TEXT NOT NULL,
    author_agent_id     TEXT,
    author_name         TEXT,
    content             TEXT NOT NULL,
    reasoning_text      TEXT,
    input_tokens        INTEGER,
    output_tokens       INTEGER,
    is_exit             INTEGER NOT NULL DEFAULT 0,
    created_at_ms       INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_room_time ON messages(room_id, created_at_ms, id);

CREATE TABLE IF NOT EXISTS room_turn_events (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    room_id       INTEGER NOT NULL,
    turn_number   INTEGER NOT NULL,
    phase         TEXT NOT NULL,
    status        TEXT NOT NULL,
    created_at_ms INTEGER NOT NULL,
    data_json     TEXT
);

CREATE INDEX IF NOT EXISTS idx_turn_events_room ON room_turn_events(room_id, turn_number, id);

CREATE TABLE IF NOT EXISTS memories (
    id            TEXT PRIMARY KEY,
    agent_id      TEXT NOT NULL,
    room_id       INTEGER,
    content       TEXT NOT NULL,
    created_by    TEXT NOT NULL DEFAULT 'agent',
    created_at_ms INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memories_agent ON memories(agent_id, created_at_ms);

CREATE TABLE IF NOT EXISTS jobs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    dedup_key       TEXT UNIQUE,
    body            TEXT NOT NULL,
    available_at_ms INTEGER NOT NULL,
    leased_until_ms INTEGER,
    attempts        INTEGER NOT NULL DEFAULT 0,
    created_at_ms   INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_available ON jobs(available_at_ms, id);
"""


def store_op(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Translate sqlite failures raised by ``func`` into ``StoreError``."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except sqlite3.Error as e:
            raise StoreError(f"{func.__name__}: {e}") from e

    return wrapper


class Database:
    """
    One aiosqlite connection shared by every store in the process.

    Reads run freely; anything that writes takes ``write_lock`` so a
    multi-statement operation commits as a unit.
    """

    def __init__(self, path: str | Path):
        self.path = str(path)
        self.write_lock = asyncio.Lock()
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError("Database is not connected")
        return self._conn

    async def connect(self) -> "Database":
        if self._conn is not None:
            return self
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self.path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.path}: {e}") from e
        logger.debug(f"Database ready at {self.path}")
        return self

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Row | None:
        async with self.conn.execute(sql, params) as cur:
            return await cur.fetchone()

    async def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, params) as cur:
            return list(await cur.fetchall())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Hold the write lock for several statements and commit them together."""
        async with self.write_lock:
            try:
                yield self.conn
                await self.conn.commit()
            except BaseException:
                await self.conn.rollback()
                raise

    async def write(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run one write statement and commit. Returns the affected row count."""
        async with self.transaction() as conn:
            cur = await conn.execute(sql, params)
        return cur.rowcount

    async def insert(self, sql: str, params: tuple[Any, ...] = ()) -> int | None:
        """Run one INSERT and commit. Returns the new rowid, or None if ignored."""
        async with self.transaction() as conn:
            cur = await conn.execute(sql, params)
        return cur.lastrowid if cur.rowcount else None
