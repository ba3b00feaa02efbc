"""Context builder for assembling debate prompts."""

from __future__ import annotations

import json
from typing import Any

from agon.store.models import Agent, AuthorType, Room, StoredMessage

HOUSE_RULES = """<rules>
- Stay on topic.
- Aim for 5-10 sentences per reply.
- Address other participants by name when responding to their points.
- Do not discuss being an AI, a language model, or your own limitations.
- Use plain text for math (e.g. x^2, sqrt(x), a/b). Never use LaTeX notation.
</rules>"""

DISCORD_FORMAT = """<format>
You are posting in a Discord thread.
- Use Markdown: **bold**, *italic*, `code`, ```code blocks```.
- Use line breaks for readability. Avoid walls of text.
- No HTML. No LaTeX. No embeds.
</format>"""

MODERATOR_NAME = "Moderator"


def escape_xml_text(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def escape_xml_attribute(text: str) -> str:
    return escape_xml_text(text).replace('"', "&quot;").replace("'", "&apos;")


def wrap_message(author_name: str, content: str, *, audience: bool) -> str:
    """Tag a message with its author so the model knows who is speaking."""
    return (
        f'<message author="{escape_xml_attribute(author_name)}" '
        f'audience="{"true" if audience else "false"}">{escape_xml_text(content)}</message>'
    )


def estimate_tokens(text: str) -> int:
    """Rough token count (about four characters per token)."""
    return (len(text) + 3) // 4


class ContextBuilder:
    """
    Builds the prompt (system message + alternating turns) for one agent.

    Other participants, the moderator and the audience are presented as
    tagged ``user`` messages; the agent's own earlier replies come back as
    plain ``assistant`` messages.
    """

    def build_system_prompt(self, agent: Agent) -> str:
        return f"{self._get_identity(agent)}\n\n{agent.system_prompt}\n\n{HOUSE_RULES}\n\n{DISCORD_FORMAT}"

    def _get_identity(self, agent: Agent) -> str:
        return f"""<identity>
Your name is {agent.name}. Your id is {agent.id}.
Messages are tagged with an author attribute. Use it to know who is speaking.
When someone addresses you by name, respond directly to them.
When the audience (audience="true") asks you a question or challenges your point, engage with it.
You are one of several participants in a structured debate.
You can save and search your long-term memories, re-read the thread, or call exit_debate to end the debate with a final summary.
</identity>"""

    def build_moderator_content(self, room: Room) -> str:
        return f"Room title: {room.title}\nTopic: {room.topic}"

    def build_messages(
        self,
        room: Room,
        agent: Agent,
        history: list[StoredMessage],
    ) -> list[dict[str, Any]]:
        """
        Build the complete message list for an LLM call.

        Args:
            room: Room supplying title and topic.
            agent: Agent about to speak.
            history: Prompt history, oldest first, notifications already removed.

        Returns:
            List of messages including the system prompt.
        """
        system_prompt = self.build_system_prompt(agent)
        entries: list[tuple[str, str]] = []

        if not any(m.author_type == AuthorType.MODERATOR for m in history):
            entries.append(("user", wrap_message(MODERATOR_NAME, self.build_moderator_content(room), audience=False)))

        for m in history:
            if self._is_own(m, agent):
                entries.append(("assistant", m.content))
            else:
                entries.append(("user", wrap_message(self._author_label(m), m.content, audience=m.author_type == AuthorType.AUDIENCE)))

        if room.max_input_tokens:
            entries = self._fit_budget(entries, room.max_input_tokens - estimate_tokens(system_prompt))

        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for role, text in entries:
            if messages[-1]["role"] == role:
                messages[-1]["content"] += "\n\n" + text
            else:
                messages.append({"role": role, "content": text})
        return messages

    def _is_own(self, m: StoredMessage, agent: Agent) -> bool:
        if m.author_type != AuthorType.AGENT:
            return False
        if m.author_agent_id:
            return m.author_agent_id == agent.id
        return m.author_name == agent.name

    def _author_label(self, m: StoredMessage) -> str:
        if m.author_type == AuthorType.MODERATOR:
            return MODERATOR_NAME
        if m.author_name:
            return m.author_name
        return "Audience" if m.author_type == AuthorType.AUDIENCE else "Participant"

    def _fit_budget(self, entries: list[tuple[str, str]], budget: int) -> list[tuple[str, str]]:
        """Drop the oldest entries until the estimate fits; the newest one always stays."""
        total = sum(estimate_tokens(text) for _, text in entries)
        start = 0
        while total > budget and start < len(entries) - 1:
            total -= estimate_tokens(entries[start][1])
            start += 1
        return entries[start:]

    def add_assistant_message(
        self,
        messages: list[dict[str, Any]],
        content: str | None,
        tool_calls: list[dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Append an assistant message, with any tool calls it made."""
        msg: dict[str, Any] = {"role": "assistant", "content": content or ""}
        if tool_calls:
            msg["tool_calls"] = tool_calls
        messages.append(msg)
        return messages

    def add_tool_result(
        self,
        messages: list[dict[str, Any]],
        tool_call_id: str,
        tool_name: str,
        result: str,
    ) -> list[dict[str, Any]]:
        messages.append({"role": "tool", "tool_call_id": tool_call_id, "name": tool_name, "content": result})
        return messages


def tool_call_dicts(calls: list[Any]) -> list[dict[str, Any]]:
    """OpenAI-style ``tool_calls`` entries for an assistant message."""
    return [
        {
            "id": tc.id,
            "type": "function",
            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
        }
        for tc in calls
    ]
