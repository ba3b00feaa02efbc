"""LiteLLM provider implementation for multi-provider support."""

from __future__ import annotations

import json
import os
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from agon.config.schema import ProvidersConfig
from agon.errors import LlmCallFailed, MissingLlmApiKey, UnsupportedLlmProvider
from agon.providers.base import GenerateRequest, LLMProvider, LLMResponse, ToolCallRequest
from agon.providers.overrides import build_overrides

# provider -> (LiteLLM model prefix, API key env var)
PROVIDER_SPECS: dict[str, tuple[str, str]] = {
    "openai": ("openai", "OPENAI_API_KEY"),
    "anthropic": ("anthropic", "ANTHROPIC_API_KEY"),
    "gemini": ("gemini", "GOOGLE_AI_API_KEY"),
    "openrouter": ("openrouter", "OPENROUTER_API_KEY"),
}


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Each request names its provider, so one instance serves every agent in
    the arena. Keys come from ``providers.<name>.api_key`` and fall back to
    the provider's usual environment variable.
    """

    def __init__(self, providers: ProvidersConfig):
        self.providers = providers
        litellm.suppress_debug_info = True
        litellm.drop_params = True

    def _resolve_model(self, provider: str, model: str) -> str:
        prefix = PROVIDER_SPECS[provider][0]
        if model.startswith(f"{prefix}/"):
            return model
        return f"{prefix}/{model}"

    def _credentials(self, provider: str) -> tuple[str, str | None]:
        if provider not in PROVIDER_SPECS:
            raise UnsupportedLlmProvider(provider)
        env_var = PROVIDER_SPECS[provider][1]
        cfg = getattr(self.providers, provider)
        api_key = (cfg.api_key or os.environ.get(env_var, "")).strip()
        if not api_key:
            raise MissingLlmApiKey(provider, env_var)
        return api_key, cfg.api_base

    async def generate(self, request: GenerateRequest) -> LLMResponse:
        api_key, api_base = self._credentials(request.provider)
        kwargs: dict[str, Any] = {
            "model": self._resolve_model(request.provider, request.model),
            "messages": request.messages,
            "api_key": api_key,
        }
        if api_base:
            kwargs["api_base"] = api_base
        if request.tools:
            kwargs["tools"] = request.tools
            kwargs["tool_choice"] = "auto"
        kwargs.update(build_overrides(request.provider, request.tuning))

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            logger.warning(f"LLM call {kwargs['model']} failed: {e}")
            raise LlmCallFailed(request.provider, request.model, str(e)) from e
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            args = tc.function.arguments
            if isinstance(args, str):
                try:
                    args = json.loads(args) if args.strip() else {}
                except json.JSONDecodeError:
                    args = {"raw": args}
            tool_calls.append(
                ToolCallRequest(
                    id=tc.id,
                    name=tc.function.name,
                    arguments=args if isinstance(args, dict) else {"value": args},
                )
            )

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=message.content,
            reasoning_content=getattr(message, "reasoning_content", None),
            tool_calls=tool_calls,
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
            finish_reason=choice.finish_reason or "stop",
        )
