import asyncio
import json

import httpx
import pytest

from agon.channels.discord import DiscordGateway
from agon.config.schema import DiscordConfig
from agon.errors import ChatApiError, ChatRateLimited, MissingChatCredential
from agon.store.models import WebhookBinding


def _gateway(handler, token: str = "bot-token") -> DiscordGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DiscordGateway(DiscordConfig(bot_token=token, api_base="https://discord.test/api/v10"), client=client)


def test_fetch_recent_messages_maps_and_sorts():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {
                    "id": "2",
                    "content": "Second",
                    "timestamp": "2026-01-01T00:00:02+00:00",
                    "webhook_id": "wh",
                    "author": {"id": "99", "username": "Alice", "bot": True},
                },
                {
                    "id": "1",
                    "content": "First",
                    "timestamp": "2026-01-01T00:00:01.000000+00:00",
                    "author": {"id": "7", "username": "dana", "global_name": "Dana"},
                },
            ],
        )

    async def run():
        gateway = _gateway(handler)
        try:
            return await gateway.fetch_recent_messages("t1", 500)
        finally:
            await gateway.close()

    messages = asyncio.run(run())

    assert [m.id for m in messages] == ["1", "2"]
    assert messages[0].author_name == "Dana"
    assert messages[0].is_webhook is False
    assert messages[1].is_webhook is True
    assert messages[1].created_at_ms - messages[0].created_at_ms == 1000
    assert seen[0].url.params["limit"] == "100"
    assert seen[0].headers["Authorization"] == "Bot bot-token"


def test_persona_post_uses_webhook_without_bot_auth():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "555", "timestamp": "2026-01-01T00:00:00+00:00"})

    async def run():
        gateway = _gateway(handler, token="")
        try:
            binding = WebhookBinding(channel_id="c", webhook_id="wh1", webhook_token="secret")
            return await gateway.post_as_persona(binding, "t1", "x" * 2500, "Alice", "https://img/a.png")
        finally:
            await gateway.close()

    posted = asyncio.run(run())

    request = seen[0]
    body = json.loads(request.content)
    assert posted.id == "555"
    assert request.url.path == "/api/v10/webhooks/wh1/secret"
    assert request.url.params["thread_id"] == "t1"
    assert request.url.params["wait"] == "true"
    assert "Authorization" not in request.headers
    assert len(body["content"]) == 2000
    assert body["username"] == "Alice"
    assert body["avatar_url"] == "https://img/a.png"
    assert body["allowed_mentions"] == {"parse": []}


def test_bot_identity_is_cached():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"id": 42, "username": "agon"})

    async def run():
        gateway = _gateway(handler)
        try:
            first = await gateway.get_bot_identity()
            second = await gateway.get_bot_identity()
            return first, second
        finally:
            await gateway.close()

    first, second = asyncio.run(run())

    assert first.id == "42"
    assert second is first
    assert calls == 1


def test_missing_token_raises_before_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async def run():
        gateway = _gateway(handler, token="")
        try:
            await gateway.lock_thread("t1")
        finally:
            await gateway.close()

    with pytest.raises(MissingChatCredential):
        asyncio.run(run())


@pytest.mark.parametrize(
    ("response", "error", "retryable"),
    [
        (httpx.Response(429, json={"retry_after": 1.5}), ChatRateLimited, True),
        (httpx.Response(503, text="unavailable"), ChatApiError, True),
        (httpx.Response(403, text="missing access"), ChatApiError, False),
    ],
)
def test_error_statuses(response, error, retryable):
    async def run():
        gateway = _gateway(lambda request: response)
        try:
            await gateway.post_message("t1", "hi")
        finally:
            await gateway.close()

    with pytest.raises(error) as exc:
        asyncio.run(run())

    assert exc.value.retryable is retryable
    if isinstance(exc.value, ChatRateLimited):
        assert exc.value.retry_after_ms == 1500


def test_transport_error_is_retryable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def run():
        gateway = _gateway(handler)
        try:
            await gateway.trigger_typing("t1")
        finally:
            await gateway.close()

    with pytest.raises(ChatApiError) as exc:
        asyncio.run(run())

    assert exc.value.status == 0
    assert exc.value.retryable is True


def test_lock_and_unlock_patch_thread():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"id": "t1"})

    async def run():
        gateway = _gateway(handler)
        try:
            await gateway.lock_thread("t1")
            await gateway.unlock_thread("t1")
        finally:
            await gateway.close()

    asyncio.run(run())

    assert bodies == [
        ("PATCH", "/api/v10/channels/t1", {"locked": True}),
        ("PATCH", "/api/v10/channels/t1", {"locked": False}),
    ]
