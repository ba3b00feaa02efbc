import asyncio

import pytest

from agon.agent.history import MODERATOR_MARKER
from agon.engine.jobs import TurnJob
from agon.errors import AgentNotFound, RoomNotFound
from agon.store.models import AuthorType, RoomStatus
from tests.helpers import FakeChatGateway, make_arena, seed_room


def test_open_room_announces_locks_and_queues_first_turn(tmp_path):
    gateway = FakeChatGateway()

    async def run():
        arena = await make_arena(tmp_path, gateway=gateway)
        try:
            room = await seed_room(arena, ["alice", "bob"])
            messages = await arena.store.all_messages(room.id)
            return room, messages, await arena.queue.pending(), await arena.store.list_participants(room.id)
        finally:
            await arena.close()

    room, messages, pending, participants = asyncio.run(run())

    assert room.status == RoomStatus.ACTIVE
    assert room.current_turn_agent_id == "alice"
    assert gateway.bot_posts[0].startswith(MODERATOR_MARKER)
    assert gateway.locked[room.thread_id] is True
    assert [m.author_type for m in messages] == [AuthorType.MODERATOR]
    assert messages[0].content == "Room title: Remote work\nTopic: Is remote work better?"
    assert [job.payload for job in pending] == [TurnJob(room.id, 1).to_payload()]
    assert [p.agent_id for p in participants] == ["alice", "bob"]


def test_announcement_kept_locally_without_bot_credential(tmp_path):
    gateway = FakeChatGateway(credential=False)

    async def run():
        arena = await make_arena(tmp_path, gateway=gateway)
        try:
            room = await seed_room(arena, ["alice"], webhook=False)
            return room, await arena.store.all_messages(room.id)
        finally:
            await arena.close()

    room, messages = asyncio.run(run())

    assert messages[0].external_message_id.startswith(f"local-moderator:{room.id}:")
    assert gateway.bot_posts == []


def test_reopening_a_thread_restarts_the_debate(tmp_path):
    async def run():
        arena = await make_arena(tmp_path)
        try:
            room = await seed_room(arena, ["alice", "bob"])
            await arena.engine.process(TurnJob(room.id, 1))
            await arena.store.set_summary_if_missing(room.id, "Old summary")
            reopened = await arena.rooms.open_room(
                parent_channel_id="channel-1",
                thread_id=room.thread_id,
                topic="Are cats better than dogs?",
                title="Pets",
                agent_ids=["bob"],
            )
            return room, reopened, await arena.store.all_messages(room.id)
        finally:
            await arena.close()

    room, reopened, messages = asyncio.run(run())

    assert reopened.id == room.id
    assert reopened.current_turn_number == 0
    assert reopened.current_turn_agent_id == "bob"
    assert reopened.summary_md is None
    assert reopened.max_turns == 30
    assert [m.author_type for m in messages] == [AuthorType.MODERATOR]
    assert "Are cats better than dogs?" in messages[0].content


def test_open_room_rejects_unknown_agent(tmp_path):
    async def run():
        arena = await make_arena(tmp_path)
        try:
            await seed_room(arena, ["alice"])
            await arena.rooms.open_room(
                parent_channel_id="c", thread_id="t2", topic="x", title="x", agent_ids=["alice", "ghost"]
            )
        finally:
            await arena.close()

    with pytest.raises(AgentNotFound):
        asyncio.run(run())


def test_pause_then_resume_requeues_next_turn(tmp_path):
    async def run():
        arena = await make_arena(tmp_path)
        try:
            room = await seed_room(arena, ["alice", "bob"])
            await arena.engine.process(TurnJob(room.id, 1))
            await arena.rooms.pause_room(room.id)
            # the queued turn 2 sees the pause and is dropped
            await arena.worker.drain()
            dropped = await arena.queue.pending()
            resumed = await arena.rooms.resume_room(room.id)
            again = await arena.rooms.resume_room(room.id)
            return room, dropped, resumed, again, await arena.queue.pending()
        finally:
            await arena.close()

    room, dropped, resumed, again, pending = asyncio.run(run())

    assert dropped == []
    assert resumed is True
    assert again is False
    assert [job.payload for job in pending] == [TurnJob(room.id, 2).to_payload()]


def test_resume_refuses_finished_room(tmp_path):
    async def run():
        arena = await make_arena(tmp_path)
        try:
            room = await seed_room(arena, ["alice"], max_turns=1)
            await arena.worker.drain()
            return await arena.rooms.resume_room(room.id)
        finally:
            await arena.close()

    assert asyncio.run(run()) is False


def test_unknown_room_operations_raise(tmp_path):
    async def run():
        arena = await make_arena(tmp_path)
        try:
            await arena.rooms.pause_room(7)
        finally:
            await arena.close()

    with pytest.raises(RoomNotFound):
        asyncio.run(run())
