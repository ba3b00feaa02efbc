from agon.agent.context import (
    DISCORD_FORMAT,
    HOUSE_RULES,
    ContextBuilder,
    escape_xml_text,
    wrap_message,
)
from agon.store.models import AuthorType, Room, RoomStatus, StoredMessage
from tests.helpers import make_agent


def _room(**kwargs) -> Room:
    return Room(
        id=1,
        status=RoomStatus.ACTIVE,
        topic="Cats vs dogs",
        title="Pets",
        parent_channel_id="c",
        thread_id="t",
        **kwargs,
    )


def _msg(author_type: AuthorType, content: str, name: str | None = None, agent_id: str | None = None, ts: int = 0):
    return StoredMessage(
        room_id=1,
        external_message_id=f"m-{ts}-{content[:8]}",
        thread_id="t",
        author_type=author_type,
        content=content,
        created_at_ms=ts,
        author_agent_id=agent_id,
        author_name=name,
    )


def test_system_prompt_layers_identity_persona_and_rules():
    agent = make_agent("alice", system_prompt="You love cats.")
    prompt = ContextBuilder().build_system_prompt(agent)

    assert "Your name is Alice" in prompt
    assert prompt.index("You love cats.") < prompt.index(HOUSE_RULES) < prompt.index(DISCORD_FORMAT)


def test_moderator_injected_when_history_has_none():
    agent = make_agent("alice")
    messages = ContextBuilder().build_messages(_room(), agent, [])

    assert [m["role"] for m in messages] == ["system", "user"]
    assert 'author="Moderator"' in messages[1]["content"]
    assert "Topic: Cats vs dogs" in messages[1]["content"]


def test_own_messages_are_assistant_and_others_are_wrapped():
    agent = make_agent("alice")
    history = [
        _msg(AuthorType.MODERATOR, "Room title: Pets\nTopic: Cats vs dogs", "Moderator", ts=1),
        _msg(AuthorType.AGENT, "Cats are independent.", "Alice", "alice", ts=2),
        _msg(AuthorType.AGENT, "Dogs are <loyal> & fun.", "Bob", "bob", ts=3),
        _msg(AuthorType.AUDIENCE, "What about fish?", "Dana", ts=4),
    ]

    messages = ContextBuilder().build_messages(_room(), agent, history)

    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[2]["content"] == "Cats are independent."
    assert messages[1]["content"].count("<message ") == 1
    last = messages[3]["content"]
    assert 'author="Bob" audience="false">Dogs are &lt;loyal&gt; &amp; fun.</message>' in last
    assert 'author="Dana" audience="true">What about fish?</message>' in last
    assert "\n\n" in last


def test_own_messages_matched_by_name_when_agent_id_missing():
    agent = make_agent("alice")
    history = [_msg(AuthorType.AGENT, "Synced without id.", "Alice", ts=1)]

    messages = ContextBuilder().build_messages(_room(), agent, history)

    assert messages[-1] == {"role": "assistant", "content": "Synced without id."}


def test_input_budget_drops_oldest_entries():
    agent = make_agent("alice", system_prompt="")
    history = [_msg(AuthorType.AUDIENCE, f"{i} " + "x" * 400, f"user{i}", ts=i) for i in range(10)]
    builder = ContextBuilder()
    system_tokens = len(builder.build_system_prompt(agent)) // 4
    room = _room(max_input_tokens=system_tokens + 350)

    messages = builder.build_messages(room, agent, history)

    text = messages[-1]["content"]
    assert "9 xxx" in text
    assert "0 xxx" not in text
    assert 'author="Moderator"' not in text


def test_escaping_helpers():
    assert escape_xml_text("a < b && c > d") == "a &lt; b &amp;&amp; c &gt; d"
    assert wrap_message('Bob "B"', "hi", audience=False) == (
        '<message author="Bob &quot;B&quot;" audience="false">hi</message>'
    )
