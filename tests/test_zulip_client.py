from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from zulip_companion.connectors.zulip_client import BadEventQueueError, ZulipApiError, ZulipClient
from zulip_companion.core.models import MessageEvent, ReactionEvent


def make_client(handler) -> ZulipClient:
    return ZulipClient(
        realm="https://chat.example.com/",
        email="bot@example.com",
        api_key="k",
        transport=httpx.MockTransport(handler),
    )


def form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
async def test_send_message_posts_form_and_returns_id():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": "success", "id": 42})

    client = make_client(handler)
    msg_id = await client.send_message("general", "lunch", "hi **all**")
    await client.aclose()

    assert msg_id == 42
    req = seen[0]
    assert req.method == "POST"
    assert req.url.path == "/api/v1/messages"
    assert req.headers["authorization"].startswith("Basic ")
    assert form(req) == {"type": "stream", "to": "general", "topic": "lunch", "content": "hi **all**"}


@pytest.mark.asyncio
async def test_error_result_raises_with_code():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"result": "error", "msg": "Stream does not exist", "code": "STREAM_DOES_NOT_EXIST"})

    client = make_client(handler)
    with pytest.raises(ZulipApiError) as exc:
        await client.send_message("nope", "t", "x")
    await client.aclose()

    assert exc.value.code == "STREAM_DOES_NOT_EXIST"
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_bad_event_queue_is_distinguished():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"result": "error", "msg": "Bad event queue id", "code": "BAD_EVENT_QUEUE_ID"})

    client = make_client(handler)
    with pytest.raises(BadEventQueueError):
        await client.get_events("q1", 5)
    await client.aclose()


@pytest.mark.asyncio
async def test_get_events_parses_and_drops_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["queue_id"] == "q1"
        assert request.url.params["last_event_id"] == "5"
        return httpx.Response(200, json={
            "result": "success",
            "events": [
                {
                    "id": 6,
                    "type": "message",
                    "flags": ["mentioned"],
                    "message": {
                        "id": 100,
                        "type": "stream",
                        "sender_id": 1,
                        "sender_email": "alice@example.com",
                        "sender_full_name": "Alice",
                        "display_recipient": "general",
                        "subject": "lunch",
                        "content": "<p>hi</p>",
                    },
                },
                {"id": 7, "type": "reaction", "op": "add", "user_id": 1, "message_id": 100, "emoji_name": "refresh"},
                {"id": 8, "type": "message"},
            ],
        })

    client = make_client(handler)
    events = await client.get_events("q1", 5)
    await client.aclose()

    assert len(events) == 2
    msg_event, reaction = events
    assert isinstance(msg_event, MessageEvent)
    assert msg_event.mentioned
    assert msg_event.message.channel == "general"
    assert msg_event.message.topic == "lunch"
    assert isinstance(reaction, ReactionEvent)
    assert reaction.added


@pytest.mark.asyncio
async def test_edit_returns_false_when_refused():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        return httpx.Response(400, json={"result": "error", "msg": "Invalid message(s)"})

    client = make_client(handler)
    assert await client.edit_message(9, "new") is False
    await client.aclose()


@pytest.mark.asyncio
async def test_fetch_messages_json_encodes_narrow():
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(dict(request.url.params))
        return httpx.Response(200, json={"result": "success", "messages": []})

    client = make_client(handler)
    await client.fetch_messages("general", "lunch", anchor=77, num_before=1)
    await client.aclose()

    assert json.loads(captured["narrow"]) == [
        {"operator": "channel", "operand": "general"},
        {"operator": "topic", "operand": "lunch"},
    ]
    assert captured["anchor"] == "77"
    assert captured["num_before"] == "1"


@pytest.mark.asyncio
async def test_create_channel_confirms_by_name():
    def handler(request: httpx.Request) -> httpx.Response:
        body = form(request)
        assert json.loads(body["principals"]) == ["alice@example.com"]
        return httpx.Response(200, json={
            "result": "success",
            "subscribed": {"alice@example.com": ["Tasks-General"]},
            "already_subscribed": {},
        })

    client = make_client(handler)
    assert await client.create_channel("tasks-general", "Tasks", ["alice@example.com"]) is True
    await client.aclose()


@pytest.mark.asyncio
async def test_get_message_missing_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"result": "error", "msg": "Invalid message(s)"})

    client = make_client(handler)
    assert await client.get_message(123) is None
    await client.aclose()
