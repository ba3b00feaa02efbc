"""Discord REST implementation of the chat gateway."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from agon.channels.base import BotIdentity, ChatGateway, ChatMessage, PostedMessage
from agon.config.schema import DiscordConfig
from agon.errors import ChatApiError, ChatRateLimited, MissingChatCredential
from agon.store.models import WebhookBinding, now_ms

MAX_MESSAGE_CHARS = 2000


def _parse_timestamp(value: str | None) -> int:
    if not value:
        return now_ms()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return now_ms()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _retry_after_ms(response: httpx.Response) -> int:
    try:
        body = response.json()
        if isinstance(body, dict) and body.get("retry_after") is not None:
            return int(float(body["retry_after"]) * 1000)
    except ValueError:
        pass
    header = response.headers.get("Retry-After")
    if header:
        try:
            return int(float(header) * 1000)
        except ValueError:
            pass
    return 1000


class DiscordGateway(ChatGateway):
    """
    Discord client over the v10 REST API.

    Bot-authenticated calls need ``discord.bot_token``; webhook posts only
    need the binding's id and token. The bot identity is fetched once per
    instance.
    """

    name = "discord"
    max_message_chars = MAX_MESSAGE_CHARS

    def __init__(self, config: DiscordConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._bot: BotIdentity | None = None

    async def close(self) -> None:
        await self._client.aclose()

    def _bot_headers(self) -> dict[str, str]:
        token = (self.config.bot_token or "").strip()
        if not token:
            raise MissingChatCredential("discord.bot_token")
        return {"Authorization": f"Bot {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        endpoint: str,
        auth: bool = True,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        headers = self._bot_headers() if auth else {}
        url = f"{self.config.api_base.rstrip('/')}{path}"
        try:
            response = await self._client.request(method, url, headers=headers, params=params, json=json)
        except httpx.HTTPError as e:
            raise ChatApiError(endpoint, 0, str(e)) from e

        if response.status_code == 429:
            retry_after = _retry_after_ms(response)
            logger.warning(f"Discord rate limited on {endpoint}, retry after {retry_after}ms")
            raise ChatRateLimited(endpoint, retry_after)
        if response.status_code >= 400:
            raise ChatApiError(endpoint, response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get_bot_identity(self) -> BotIdentity:
        if self._bot is None:
            data = await self._request("GET", "/users/@me", endpoint="get_bot_identity")
            self._bot = BotIdentity(id=str(data["id"]), name=data.get("username") or "")
        return self._bot

    async def fetch_recent_messages(self, thread_id: str, limit: int) -> list[ChatMessage]:
        data = await self._request(
            "GET",
            f"/channels/{thread_id}/messages",
            endpoint="fetch_recent_messages",
            params={"limit": max(1, min(limit, 100))},
        )
        messages = []
        for item in data or []:
            author = item.get("author") or {}
            messages.append(
                ChatMessage(
                    id=str(item["id"]),
                    thread_id=thread_id,
                    author_id=str(author.get("id", "")),
                    author_name=author.get("global_name") or author.get("username") or "",
                    content=item.get("content") or "",
                    created_at_ms=_parse_timestamp(item.get("timestamp")),
                    is_webhook=bool(item.get("webhook_id")),
                    is_bot=bool(author.get("bot")),
                )
            )
        messages.sort(key=lambda m: (m.created_at_ms, m.id))
        return messages

    async def post_message(self, thread_id: str, content: str) -> PostedMessage:
        data = await self._request(
            "POST",
            f"/channels/{thread_id}/messages",
            endpoint="post_message",
            json={"content": self.clip_message(content), "allowed_mentions": {"parse": []}},
        )
        return PostedMessage(id=str(data["id"]), created_at_ms=_parse_timestamp(data.get("timestamp")))

    async def post_as_persona(
        self,
        webhook: WebhookBinding,
        thread_id: str,
        content: str,
        persona_name: str,
        avatar_url: str | None = None,
    ) -> PostedMessage:
        payload: dict[str, Any] = {
            "content": self.clip_message(content),
            "username": persona_name[:80],
            "allowed_mentions": {"parse": []},
        }
        if avatar_url:
            payload["avatar_url"] = avatar_url
        data = await self._request(
            "POST",
            f"/webhooks/{webhook.webhook_id}/{webhook.webhook_token}",
            endpoint="post_as_persona",
            auth=False,
            params={"thread_id": thread_id, "wait": "true"},
            json=payload,
        )
        return PostedMessage(id=str(data["id"]), created_at_ms=_parse_timestamp(data.get("timestamp")))

    async def lock_thread(self, thread_id: str) -> None:
        await self._request("PATCH", f"/channels/{thread_id}", endpoint="lock_thread", json={"locked": True})

    async def unlock_thread(self, thread_id: str) -> None:
        await self._request("PATCH", f"/channels/{thread_id}", endpoint="unlock_thread", json={"locked": False})

    async def trigger_typing(self, thread_id: str) -> None:
        await self._request("POST", f"/channels/{thread_id}/typing", endpoint="trigger_typing")
