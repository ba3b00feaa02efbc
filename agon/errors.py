"""Closed error taxonomy shared by the store, gateways and the turn engine."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    ROOM_NOT_FOUND = "room_not_found"
    AGENT_NOT_FOUND = "agent_not_found"
    STORE = "store"
    CHAT_API = "chat_api"
    CHAT_RATE_LIMITED = "chat_rate_limited"
    MISSING_CHAT_CREDENTIAL = "missing_chat_credential"
    LLM_CALL_FAILED = "llm_call_failed"
    LLM_CONTENT = "llm_content"
    MISSING_LLM_API_KEY = "missing_llm_api_key"
    UNSUPPORTED_LLM_PROVIDER = "unsupported_llm_provider"
    TOOL_LOOP_EXCEEDED = "tool_loop_exceeded"


class ArenaError(Exception):
    """Base class for every typed failure raised inside the arena."""

    kind: ErrorKind

    @property
    def retryable(self) -> bool:
        return False


class RoomNotFound(ArenaError):
    kind = ErrorKind.ROOM_NOT_FOUND

    def __init__(self, room_id: int):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class AgentNotFound(ArenaError):
    kind = ErrorKind.AGENT_NOT_FOUND

    def __init__(self, agent_id: str | None):
        super().__init__(f"Agent {agent_id!r} not found")
        self.agent_id = agent_id


class StoreError(ArenaError):
    """Datastore read or write failed. Always transient from the engine's view."""

    kind = ErrorKind.STORE

    @property
    def retryable(self) -> bool:
        return True


class ChatApiError(ArenaError):
    """Chat platform returned an error. ``status`` 0 means the request never completed."""

    kind = ErrorKind.CHAT_API

    def __init__(self, endpoint: str, status: int, body: str = ""):
        super().__init__(f"Chat API {endpoint} failed with status {status}: {body[:200]}")
        self.endpoint = endpoint
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        return self.status == 0 or self.status == 429 or self.status >= 500


class ChatRateLimited(ArenaError):
    kind = ErrorKind.CHAT_RATE_LIMITED

    def __init__(self, endpoint: str, retry_after_ms: int):
        super().__init__(f"Chat API {endpoint} rate limited, retry after {retry_after_ms}ms")
        self.endpoint = endpoint
        self.retry_after_ms = retry_after_ms

    @property
    def retryable(self) -> bool:
        return True


class MissingChatCredential(ArenaError):
    kind = ErrorKind.MISSING_CHAT_CREDENTIAL

    def __init__(self, name: str = "discord.bot_token"):
        super().__init__(f"Missing chat credential: {name}")
        self.name = name


class LlmCallFailed(ArenaError):
    kind = ErrorKind.LLM_CALL_FAILED

    def __init__(self, provider: str, model: str, message: str):
        super().__init__(f"LLM call to {provider}/{model} failed: {message}")
        self.provider = provider
        self.model = model

    @property
    def retryable(self) -> bool:
        return True


class LlmContentError(ArenaError):
    """The model answered, but with nothing usable."""

    kind = ErrorKind.LLM_CONTENT


class MissingLlmApiKey(ArenaError):
    kind = ErrorKind.MISSING_LLM_API_KEY

    def __init__(self, provider: str, env_var: str):
        super().__init__(f"No API key configured for {provider} (set providers.{provider}.api_key or {env_var})")
        self.provider = provider
        self.env_var = env_var


class UnsupportedLlmProvider(ArenaError):
    kind = ErrorKind.UNSUPPORTED_LLM_PROVIDER

    def __init__(self, provider: str):
        super().__init__(f"Unsupported LLM provider '{provider}'")
        self.provider = provider


class ToolLoopExceeded(ArenaError):
    kind = ErrorKind.TOOL_LOOP_EXCEEDED

    def __init__(self, rounds: int):
        super().__init__(f"Tool loop did not finish within {rounds} rounds")
        self.rounds = rounds


class StepFailed(Exception):
    """A named step gave up. ``retryable`` tells the queue whether to redeliver the job."""

    def __init__(self, step: str, cause: BaseException, retryable: bool, attempts: int = 1):
        super().__init__(f"Step '{step}' failed after {attempts} attempt(s): {cause}")
        self.step = step
        self.cause = cause
        self.retryable = retryable
        self.attempts = attempts
