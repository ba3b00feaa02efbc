"""In-memory gateway, scripted provider and arena builder shared by the tests."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any

from agon.channels.base import BotIdentity, ChatGateway, ChatMessage, PostedMessage
from agon.config.schema import (
    ArenaConfig,
    Config,
    DatabaseConfig,
    FinalizeConfig,
    StepPolicyConfig,
    StepsConfig,
)
from agon.errors import MissingChatCredential
from agon.providers.base import GenerateRequest, LLMProvider, LLMResponse, ToolCallRequest
from agon.runtime import Arena
from agon.store.models import Agent, WebhookBinding, now_ms

BOT_ID = "bot-1"


class FakeChatGateway(ChatGateway):
    """
    Thread store in memory.

    Queue exceptions in ``post_failures`` to fail persona posts. With
    ``message_limit`` set, posts are cut the way a real platform cuts them.
    """

    name = "fake"

    def __init__(self, *, credential: bool = True, message_limit: int | None = None):
        self.credential = credential
        self.max_message_chars = message_limit
        self.threads: dict[str, list[ChatMessage]] = {}
        self.persona_posts: list[dict[str, Any]] = []
        self.bot_posts: list[str] = []
        self.locked: dict[str, bool] = {}
        self.typing = 0
        self.post_failures: list[Exception] = []
        self.bot_post_failures: list[Exception] = []
        self._ids = itertools.count(1000)

    def _append(self, thread_id: str, msg: ChatMessage) -> PostedMessage:
        self.threads.setdefault(thread_id, []).append(msg)
        return PostedMessage(id=msg.id, created_at_ms=msg.created_at_ms)

    def add_audience_message(self, thread_id: str, author: str, content: str) -> ChatMessage:
        msg = ChatMessage(
            id=str(next(self._ids)),
            thread_id=thread_id,
            author_id=f"user-{author}",
            author_name=author,
            content=content,
            created_at_ms=now_ms(),
        )
        self.threads.setdefault(thread_id, []).append(msg)
        return msg

    async def fetch_recent_messages(self, thread_id: str, limit: int) -> list[ChatMessage]:
        if not self.credential:
            raise MissingChatCredential()
        return list(self.threads.get(thread_id, []))[-limit:]

    async def post_message(self, thread_id: str, content: str) -> PostedMessage:
        if not self.credential:
            raise MissingChatCredential()
        if self.bot_post_failures:
            raise self.bot_post_failures.pop(0)
        content = self.clip_message(content)
        self.bot_posts.append(content)
        return self._append(
            thread_id,
            ChatMessage(
                id=str(next(self._ids)),
                thread_id=thread_id,
                author_id=BOT_ID,
                author_name="agon",
                content=content,
                created_at_ms=now_ms(),
                is_bot=True,
            ),
        )

    async def post_as_persona(
        self,
        webhook: WebhookBinding,
        thread_id: str,
        content: str,
        persona_name: str,
        avatar_url: str | None = None,
    ) -> PostedMessage:
        if self.post_failures:
            raise self.post_failures.pop(0)
        content = self.clip_message(content)
        self.persona_posts.append({"thread_id": thread_id, "content": content, "name": persona_name})
        return self._append(
            thread_id,
            ChatMessage(
                id=str(next(self._ids)),
                thread_id=thread_id,
                author_id=f"webhook-{webhook.webhook_id}",
                author_name=persona_name,
                content=content,
                created_at_ms=now_ms(),
                is_webhook=True,
                is_bot=True,
            ),
        )

    async def lock_thread(self, thread_id: str) -> None:
        if not self.credential:
            raise MissingChatCredential()
        self.locked[thread_id] = True

    async def unlock_thread(self, thread_id: str) -> None:
        if not self.credential:
            raise MissingChatCredential()
        self.locked[thread_id] = False

    async def trigger_typing(self, thread_id: str) -> None:
        if not self.credential:
            raise MissingChatCredential()
        self.typing += 1

    async def get_bot_identity(self) -> BotIdentity:
        if not self.credential:
            raise MissingChatCredential()
        return BotIdentity(id=BOT_ID, name="agon")


class ScriptedProvider(LLMProvider):
    """
    Returns queued responses (or raises queued exceptions) in order.

    Once the script is empty every call answers with a numbered plain reply.
    """

    def __init__(self, script: list[LLMResponse | Exception] | None = None):
        self.script = list(script or [])
        self.requests: list[GenerateRequest] = []

    async def generate(self, request: GenerateRequest) -> LLMResponse:
        self.requests.append(request)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return LLMResponse(content=f"Point number {len(self.requests)}.", input_tokens=10, output_tokens=5)


def tool_call(name: str, call_id: str = "call-1", **arguments: Any) -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
        input_tokens=3,
        output_tokens=2,
    )


def fast_steps(max_retries: int = 2) -> StepsConfig:
    policy = StepPolicyConfig(max_retries=max_retries, initial_delay_seconds=0, backoff_factor=1, timeout_seconds=5)
    return StepsConfig(db=policy, chat=policy, llm=policy)


def make_config(tmp_path: Path, **arena: Any) -> Config:
    return Config(
        database=DatabaseConfig(path=str(tmp_path / "agon.db")),
        arena=ArenaConfig(thinking_delay_seconds=0, **arena),
        steps=fast_steps(),
        finalize=FinalizeConfig(enabled=False),
    )


async def make_arena(
    tmp_path: Path,
    *,
    gateway: ChatGateway | None = None,
    provider: LLMProvider | None = None,
    config: Config | None = None,
) -> Arena:
    return await Arena.create(
        config or make_config(tmp_path),
        gateway=gateway or FakeChatGateway(),
        provider=provider or ScriptedProvider(),
    )


def make_agent(agent_id: str, name: str | None = None, **kwargs: Any) -> Agent:
    return Agent(
        id=agent_id,
        name=name or agent_id.capitalize(),
        system_prompt=kwargs.pop("system_prompt", f"You are {agent_id}."),
        llm_provider=kwargs.pop("llm_provider", "openai"),
        llm_model=kwargs.pop("llm_model", "gpt-4o-mini"),
        **kwargs,
    )


async def seed_room(
    arena: Arena,
    agent_ids: list[str],
    *,
    thread_id: str = "thread-1",
    channel_id: str = "channel-1",
    webhook: bool = True,
    max_turns: int = 30,
    audience_slot: int = 0,
    max_input_tokens: int | None = None,
):
    """Register agents (and a webhook) and open a room; turn 1 ends up queued."""
    for agent_id in agent_ids:
        await arena.store.upsert_agent(make_agent(agent_id))
    if webhook:
        await arena.store.bind_webhook(WebhookBinding(channel_id=channel_id, webhook_id="wh-1", webhook_token="tok"))
    return await arena.rooms.open_room(
        parent_channel_id=channel_id,
        thread_id=thread_id,
        topic="Is remote work better?",
        title="Remote work",
        agent_ids=agent_ids,
        max_turns=max_turns,
        audience_slot_duration_seconds=audience_slot,
        max_input_tokens=max_input_tokens,
    )
