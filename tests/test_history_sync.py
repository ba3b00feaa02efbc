import asyncio

from agon.agent.history import (
    MODERATOR_MARKER,
    DedupWindow,
    classify_message,
    raw_window_size,
    reply_already_posted,
    select_prompt_history,
)
from agon.channels.base import ChatMessage
from agon.store.models import AuthorType, StoredMessage, local_turn_id
from tests.helpers import BOT_ID, FakeChatGateway, make_arena, seed_room


def _chat(content: str, *, author_id: str = "u1", name: str = "Dana", webhook: bool = False, bot: bool = False):
    return ChatMessage(
        id="1",
        thread_id="t",
        author_id=author_id,
        author_name=name,
        content=content,
        created_at_ms=0,
        is_webhook=webhook,
        is_bot=bot,
    )


def _stored(external_id: str, content: str, ts: int, *, agent_id: str = "alice", author_type=AuthorType.AGENT):
    return StoredMessage(
        room_id=1,
        external_message_id=external_id,
        thread_id="t",
        author_type=author_type,
        content=content,
        created_at_ms=ts,
        author_agent_id=agent_id,
        author_name="Alice",
    )


def test_classify_message():
    assert classify_message(_chat("hi", webhook=True, bot=True), BOT_ID) == AuthorType.AGENT
    assert classify_message(_chat(f"{MODERATOR_MARKER}\nTopic: x", author_id=BOT_ID, bot=True), BOT_ID) == AuthorType.MODERATOR
    assert classify_message(_chat("⚠️ failed", author_id=BOT_ID, bot=True), BOT_ID) == AuthorType.NOTIFICATION
    assert classify_message(_chat("beep", author_id="other-bot", bot=True), BOT_ID) == AuthorType.NOTIFICATION
    assert classify_message(_chat("question?"), BOT_ID) == AuthorType.AUDIENCE


def test_dedup_window_bounds():
    window = DedupWindow(early_ms=30_000, late_ms=1_800_000)

    assert window.contains(100_000, 100_000)
    assert window.contains(100_000, 70_001)
    assert not window.contains(100_000, 70_000)
    assert window.contains(100_000, 1_899_999)
    assert not window.contains(100_000, 1_900_000)


def test_local_copy_dropped_once_synced_copy_exists():
    window = DedupWindow()
    raw = [
        _stored("mod", "Topic", 0, agent_id=None, author_type=AuthorType.MODERATOR),
        _stored(local_turn_id(1, 1), "Cats rule.", 1_000),
        _stored("555", "Cats rule.", 2_000),
        _stored("note", "⚠️ failed", 3_000, agent_id=None, author_type=AuthorType.NOTIFICATION),
        _stored(local_turn_id(1, 2), "Unposted reply.", 4_000, agent_id="bob"),
    ]

    history = select_prompt_history(raw, 20, window)

    assert [m.external_message_id for m in history] == ["mod", "555", local_turn_id(1, 2)]


def test_local_copy_kept_when_synced_copy_outside_window():
    window = DedupWindow(early_ms=1_000, late_ms=5_000)
    raw = [
        _stored(local_turn_id(1, 1), "Same words.", 0),
        _stored("555", "Same words.", 60_000),
    ]

    history = select_prompt_history(raw, 20, window)

    assert len(history) == 2


def test_history_limit_keeps_newest():
    raw = [_stored(f"m{i}", f"msg {i}", i) for i in range(30)]

    history = select_prompt_history(raw, 5, DedupWindow())

    assert [m.content for m in history] == [f"msg {i}" for i in range(25, 30)]
    assert raw_window_size(5) == 60
    assert raw_window_size(40) == 120


def test_reply_already_posted_checks_store_and_fetch():
    window = DedupWindow()
    reply = _stored(local_turn_id(1, 1), "Cats rule.", 1_000)

    assert reply_already_posted(reply, "Alice", [_stored("555", "Cats rule.", 1_500)], None, window)
    fetched = [ChatMessage("9", "t", "wh", "Alice", "Cats rule.", 1_200, is_webhook=True, is_bot=True)]
    assert reply_already_posted(reply, "Alice", [], fetched, window)
    assert not reply_already_posted(reply, "Bob", [], fetched, window)
    assert not reply_already_posted(reply, "Alice", [reply], None, window)


def test_sync_upserts_thread_messages(tmp_path):
    gateway = FakeChatGateway()

    async def run():
        arena = await make_arena(tmp_path, gateway=gateway)
        try:
            room = await seed_room(arena, ["alice", "bob"])
            gateway.add_audience_message(room.thread_id, "Dana", "Why not both?")
            fetched = await arena.engine.history.fetch(room)
            await arena.engine.history.upsert(room, fetched)
            await arena.engine.history.upsert(room, fetched)
            return await arena.store.all_messages(room.id)
        finally:
            await arena.close()

    messages = asyncio.run(run())

    assert [m.author_type for m in messages] == [AuthorType.MODERATOR, AuthorType.AUDIENCE]
    assert messages[0].author_name == "Moderator"
    assert not messages[0].content.startswith(MODERATOR_MARKER)
    assert messages[1].author_name == "Dana"


def test_sync_without_credential_returns_none(tmp_path):
    gateway = FakeChatGateway(credential=False)

    async def run():
        arena = await make_arena(tmp_path, gateway=gateway)
        try:
            room = await seed_room(arena, ["alice"], webhook=False)
            return await arena.engine.history.fetch(room)
        finally:
            await arena.close()

    assert asyncio.run(run()) is None


def test_unmatched_synced_copy_only_dedups_same_display_name():
    window = DedupWindow()
    stranger = _stored("555", "Agreed.", 1_500, agent_id=None)
    stranger.author_name = "Mallory"
    own = _stored("556", "Agreed.", 1_600, agent_id=None)
    raw = [_stored(local_turn_id(1, 1), "Agreed.", 1_000), stranger]

    history = select_prompt_history(raw, 20, window)

    assert [m.external_message_id for m in history] == [local_turn_id(1, 1), "555"]
    assert select_prompt_history([raw[0], own], 20, window) == [own]
    assert not reply_already_posted(raw[0], "Alice", [stranger], None, window)
    assert reply_already_posted(raw[0], "Alice", [own], None, window)
