"""Bounded multi-round tool-calling loop producing one agent reply."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

from agon.agent.context import ContextBuilder, tool_call_dicts
from agon.agent.tools.debate import EXIT_DEBATE
from agon.agent.tools.registry import ToolRegistry
from agon.engine.steps import StepExecutor
from agon.errors import LlmContentError, ToolLoopExceeded
from agon.providers.base import GenerateRequest, LLMProvider, LLMResponse
from agon.store.models import Agent, AgentTuning


@dataclass
class TurnReply:
    """Final outcome of an agent's turn."""
    text: str
    reasoning_text: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    exited: bool = False
    rounds: int = 0


class ToolCallLoop:
    """
    Drives the model until it answers in plain text or leaves the debate.

    Every LLM call runs as its own ``llm-round-N`` step and every batch of
    tool executions as ``tool-exec-N``. Token usage accumulates across
    rounds; the reasoning text of the latest round that produced one wins.
    """

    def __init__(
        self,
        provider: LLMProvider,
        context: ContextBuilder | None = None,
        max_rounds: int = 128,
    ):
        self.provider = provider
        self.context = context or ContextBuilder()
        self.max_rounds = max_rounds

    async def run(
        self,
        agent: Agent,
        messages: list[dict[str, Any]],
        tools: ToolRegistry,
        steps: StepExecutor,
        tuning: AgentTuning | None = None,
    ) -> TurnReply:
        reply = TurnReply(text="")
        conversation = list(messages)
        definitions = tools.get_definitions()

        for round_no in range(1, self.max_rounds + 1):
            request = GenerateRequest(
                provider=agent.llm_provider,
                model=agent.llm_model,
                messages=conversation,
                tools=definitions,
                tuning=tuning or agent.tuning,
            )
            response: LLMResponse = await steps.run(
                f"llm-round-{round_no}",
                lambda: self.provider.generate(request),
            )
            reply.rounds = round_no
            reply.input_tokens += response.input_tokens
            reply.output_tokens += response.output_tokens
            if response.reasoning_content:
                reply.reasoning_text = response.reasoning_content

            summary = response.exit_summary
            if summary is not None:
                reply.text = summary or (response.content or "").strip()
                reply.exited = True
                logger.info(f"{agent.name} left the debate after {round_no} round(s)")
                if not reply.text:
                    raise LlmContentError(f"{agent.name} called {EXIT_DEBATE} without a summary")
                return reply

            if not response.has_tool_calls:
                text = (response.content or "").strip()
                if not text:
                    raise LlmContentError(f"{agent.name} returned an empty reply")
                reply.text = text
                return reply

            conversation = self.context.add_assistant_message(
                conversation, response.content, tool_call_dicts(response.tool_calls)
            )
            results: list[tuple[str, str, str]] = await steps.run(
                f"tool-exec-{round_no}",
                lambda: self._execute_tools(tools, response),
            )
            for call_id, name, result in results:
                conversation = self.context.add_tool_result(conversation, call_id, name, result)

        raise ToolLoopExceeded(self.max_rounds)

    async def _execute_tools(self, tools: ToolRegistry, response: LLMResponse) -> list[tuple[str, str, str]]:
        results = []
        for call in response.tool_calls:
            logger.debug(f"Executing tool: {call.name} with arguments: {json.dumps(call.arguments)}")
            result = await tools.execute(call.name, call.arguments)
            results.append((call.id, call.name, result))
        return results
