"""Per-provider translation of agent tuning into completion keyword arguments."""

from __future__ import annotations

from typing import Any

from agon.store.models import AgentTuning

REASONING_LEVELS = {"minimal", "low", "medium", "high"}
GEMINI_THINKING_LEVELS = {"low", "high"}

# Anthropic needs room for the visible answer on top of the thinking budget.
ANTHROPIC_ANSWER_HEADROOM = 1024


def cap_max_tokens(agent_max: int | None, room_max: int | None) -> int | None:
    """Lower of the agent's and the room's output-token limits."""
    limits = [v for v in (agent_max, room_max) if v]
    return min(limits) if limits else None


def build_openai_overrides(tuning: AgentTuning) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if tuning.temperature is not None:
        out["temperature"] = tuning.temperature
    if tuning.max_tokens is not None:
        out["max_tokens"] = tuning.max_tokens
    if tuning.reasoning_level in REASONING_LEVELS:
        out["reasoning_effort"] = tuning.reasoning_level
    return out


def build_anthropic_overrides(tuning: AgentTuning) -> dict[str, Any]:
    out: dict[str, Any] = {}
    budget = tuning.thinking_budget_tokens
    # Extended thinking only accepts the default temperature.
    if budget is not None:
        out["thinking"] = {"type": "enabled", "budget_tokens": budget}
    elif tuning.temperature is not None:
        out["temperature"] = tuning.temperature
    if tuning.max_tokens is not None:
        out["max_tokens"] = tuning.max_tokens
    if budget is not None and out.get("max_tokens", 0) <= budget:
        out["max_tokens"] = budget + ANTHROPIC_ANSWER_HEADROOM
    return out


def build_gemini_overrides(tuning: AgentTuning) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if tuning.temperature is not None:
        out["temperature"] = tuning.temperature
    if tuning.max_tokens is not None:
        out["max_tokens"] = tuning.max_tokens
    if tuning.thinking_budget_tokens is not None:
        out["thinking"] = {"type": "enabled", "budget_tokens": tuning.thinking_budget_tokens}
    elif tuning.reasoning_level in GEMINI_THINKING_LEVELS:
        out["reasoning_effort"] = tuning.reasoning_level
    return out


def build_openrouter_overrides(tuning: AgentTuning) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if tuning.temperature is not None:
        out["temperature"] = tuning.temperature
    if tuning.max_tokens is not None:
        out["max_tokens"] = tuning.max_tokens
    if tuning.reasoning_level in REASONING_LEVELS:
        out["reasoning_effort"] = tuning.reasoning_level
    return out


_BUILDERS = {
    "openai": build_openai_overrides,
    "anthropic": build_anthropic_overrides,
    "gemini": build_gemini_overrides,
    "openrouter": build_openrouter_overrides,
}


def build_overrides(provider: str, tuning: AgentTuning) -> dict[str, Any]:
    """Completion kwargs for ``provider``; unknown providers get no tuning."""
    builder = _BUILDERS.get(provider)
    return builder(tuning) if builder else {}
