import asyncio

import pytest

from agon.agent.loop import ToolCallLoop
from agon.agent.tools.debate import build_debate_tools
from agon.agent.tools.registry import ToolRegistry
from agon.engine.steps import StepExecutor
from agon.errors import LlmContentError, ToolLoopExceeded
from agon.providers.base import LLMResponse, ToolCallRequest
from tests.helpers import ScriptedProvider, fast_steps, make_agent, make_arena, seed_room, tool_call

MESSAGES = [{"role": "system", "content": "sys"}, {"role": "user", "content": "hello"}]


def _run_loop(tmp_path, script, max_rounds: int = 5):
    provider = ScriptedProvider(script)

    async def run():
        arena = await make_arena(tmp_path, provider=provider)
        try:
            room = await seed_room(arena, ["alice"])
            agent = await arena.store.get_agent("alice")
            tools = build_debate_tools(arena.store, arena.memory, room, agent.id)
            loop = ToolCallLoop(provider, max_rounds=max_rounds)
            reply = await loop.run(agent, MESSAGES, tools, StepExecutor(fast_steps()))
            memories = await arena.memory.search_memories("alice", "", limit=10)
            return reply, memories
        finally:
            await arena.close()

    reply, memories = asyncio.run(run())
    return provider, reply, memories


def test_plain_reply_ends_loop(tmp_path):
    provider, reply, _ = _run_loop(tmp_path, [LLMResponse(content="  Cats win.  ", input_tokens=7, output_tokens=3)])

    assert reply.text == "Cats win."
    assert reply.exited is False
    assert reply.rounds == 1
    assert reply.input_tokens == 7
    assert provider.requests[0].tools


def test_tool_results_feed_next_round_and_usage_accumulates(tmp_path):
    script = [
        tool_call("memory_add", memories=["Cats sleep 15 hours a day"]),
        LLMResponse(content="Cats nap a lot.", reasoning_content="thought", input_tokens=10, output_tokens=4),
    ]

    provider, reply, memories = _run_loop(tmp_path, script)

    assert reply.text == "Cats nap a lot."
    assert reply.rounds == 2
    assert reply.input_tokens == 13
    assert reply.output_tokens == 6
    assert reply.reasoning_text == "thought"
    assert [m.content for m in memories] == ["Cats sleep 15 hours a day"]
    second = provider.requests[1].messages
    assert second[-2]["role"] == "assistant"
    assert second[-2]["tool_calls"][0]["function"]["name"] == "memory_add"
    assert second[-1]["role"] == "tool"
    assert second[-1]["content"].startswith("Saved 1 new memories")


def test_exit_debate_uses_summary(tmp_path):
    _, reply, _ = _run_loop(tmp_path, [tool_call("exit_debate", summary="  Final: cats.  ")])

    assert reply.exited is True
    assert reply.text == "Final: cats."


def test_exit_without_summary_falls_back_to_content(tmp_path):
    response = LLMResponse(
        content="Goodbye all.",
        tool_calls=[ToolCallRequest(id="x", name="exit_debate", arguments={})],
    )

    _, reply, _ = _run_loop(tmp_path, [response])

    assert reply.exited is True
    assert reply.text == "Goodbye all."


def test_empty_reply_is_content_error(tmp_path):
    with pytest.raises(LlmContentError):
        _run_loop(tmp_path, [LLMResponse(content="   ")])


def test_round_cap(tmp_path):
    script = [tool_call("thread_read", call_id=f"c{i}", limit=5) for i in range(10)]

    with pytest.raises(ToolLoopExceeded) as exc:
        _run_loop(tmp_path, script, max_rounds=4)

    assert exc.value.rounds == 4


def test_unknown_tool_reports_error_to_model(tmp_path):
    script = [tool_call("launch_rockets"), LLMResponse(content="Never mind.")]

    provider, reply, _ = _run_loop(tmp_path, script)

    assert reply.text == "Never mind."
    assert provider.requests[1].messages[-1]["content"] == "Error: Tool 'launch_rockets' not found"


def test_thread_read_and_memory_search_tools(tmp_path):
    async def run():
        arena = await make_arena(tmp_path)
        try:
            room = await seed_room(arena, ["alice"])
            await arena.memory.insert_memories("alice", ["Remote work saves commuting time"])
            tools = build_debate_tools(arena.store, arena.memory, room, "alice")
            thread = await tools.execute("thread_read", {"limit": 500})
            found = await tools.execute("memory_search", {"query": "commuting"})
            missing = await tools.execute("memory_search", {"query": "volcano"})
            bad = await tools.execute("memory_add", {"memories": []})
            return tools.tool_names, thread, found, missing, bad
        finally:
            await arena.close()

    names, thread, found, missing, bad = asyncio.run(run())

    assert names == ["memory_add", "memory_search", "thread_read", "exit_debate"]
    assert "Topic: Is remote work better?" in thread
    assert "[Moderator]" in thread
    assert found == "- Remote work saves commuting time"
    assert missing == "No matching memories."
    assert bad.startswith("Error:")


def test_request_names_agent_provider_and_model():
    provider = ScriptedProvider([LLMResponse(content="ok")])
    agent = make_agent("alice")

    async def run():
        loop = ToolCallLoop(provider)
        return await loop.run(agent, MESSAGES, ToolRegistry(), StepExecutor(fast_steps()))

    asyncio.run(run())

    request = provider.requests[0]
    assert request.provider == "openai"
    assert request.model == "gpt-4o-mini"
    assert request.tools == []
