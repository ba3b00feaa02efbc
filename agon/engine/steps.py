"""Named, retried, time-boxed steps that make up one job."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from agon.config.schema import StepPolicyConfig, StepsConfig
from agon.errors import ArenaError, ChatRateLimited, StepFailed

T = TypeVar("T")

DB = "db"
CHAT = "chat"
LLM = "llm"

STEP_CLASSES: dict[str, str] = {
    "load-room": DB,
    "load-agent": DB,
    "discord-sync": CHAT,
    "sync-history": CHAT,
    "load-history": DB,
    "check-existing-reply": DB,
    "typing": CHAT,
    "persist-message": DB,
    "post-to-discord": CHAT,
    "store-synced-copy": DB,
    "advance-turn": DB,
    "enqueue-next": DB,
    "notify": CHAT,
    "store-notification": DB,
    "thread-lock": CHAT,
}

# Steps numbered per round ("llm-round-3", "tool-exec-3") match on prefix.
STEP_PREFIXES: dict[str, str] = {
    "llm-round-": LLM,
    "tool-exec-": DB,
}


def step_class(name: str) -> str:
    if name in STEP_CLASSES:
        return STEP_CLASSES[name]
    for prefix, cls in STEP_PREFIXES.items():
        if name.startswith(prefix):
            return cls
    return DB


@dataclass
class StepRecord:
    name: str
    attempts: int
    duration_ms: float
    ok: bool
    error: str = ""


class StepExecutor:
    """
    Runs steps under the retry policy of their class.

    Transient failures (store errors, chat 5xx/429/transport errors, LLM
    call failures and timeouts) are retried with exponential backoff; a rate
    limit waits at least as long as the platform asked. Once retries run out
    the step fails with ``retryable=True`` so the queue redelivers the whole
    job. Anything else fails immediately with ``retryable=False``.
    """

    def __init__(self, policies: StepsConfig | None = None):
        self.policies = policies or StepsConfig()
        self.records: list[StepRecord] = []

    def policy_for(self, name: str) -> StepPolicyConfig:
        return getattr(self.policies, step_class(name))

    async def run(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        policy = self.policy_for(name)
        delay = policy.initial_delay_seconds
        attempts = 0
        started = time.monotonic()

        while True:
            attempts += 1
            try:
                result = await asyncio.wait_for(fn(), timeout=policy.timeout_seconds)
            except asyncio.TimeoutError as e:
                error: BaseException = e
                retryable = True
                label = f"timed out after {policy.timeout_seconds}s"
            except ArenaError as e:
                error = e
                retryable = e.retryable
                label = str(e)
            except Exception as e:
                self._record(name, attempts, started, ok=False, error=repr(e))
                logger.exception(f"Step '{name}' hit an unexpected error")
                raise StepFailed(name, e, retryable=False, attempts=attempts) from e
            else:
                self._record(name, attempts, started, ok=True)
                return result

            if not retryable:
                self._record(name, attempts, started, ok=False, error=label)
                raise StepFailed(name, error, retryable=False, attempts=attempts) from error
            if attempts > policy.max_retries:
                self._record(name, attempts, started, ok=False, error=label)
                logger.warning(f"Step '{name}' gave up after {attempts} attempts: {label}")
                raise StepFailed(name, error, retryable=True, attempts=attempts) from error

            wait = delay
            if isinstance(error, ChatRateLimited):
                wait = max(wait, error.retry_after_ms / 1000)
            logger.warning(f"Step '{name}' attempt {attempts} failed ({label}); retrying in {wait:.1f}s")
            await asyncio.sleep(wait)
            delay *= policy.backoff_factor

    def _record(self, name: str, attempts: int, started: float, *, ok: bool, error: str = "") -> None:
        self.records.append(
            StepRecord(
                name=name,
                attempts=attempts,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
                ok=ok,
                error=error[:500],
            )
        )
