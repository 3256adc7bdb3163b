import asyncio
import json

import pytest

from pesantren.api.v1.chat import event_stream
from pesantren.services import chat_service
from pesantren.main import app
from pesantren.services.chat_notifier import ChatNotifier, MessageAppended, get_notifier

from test_chat_notifier import make_message


class FakeRequest:
    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


def parse_frame(frame: str) -> dict:
    fields = {}
    for line in frame.strip().splitlines():
        key, _, value = line.partition(": ")
        fields[key] = value
    return fields


async def test_stream_opens_with_retry_and_registers(notifier):
    stream = event_stream(FakeRequest(), notifier, "C1", keepalive=0.05)

    assert await stream.__anext__() == "retry: 3000\n\n"
    assert notifier.subscriber_count("C1") == 1

    await stream.aclose()
    assert notifier.subscriber_count("C1") == 0


async def test_stream_delivers_appended_and_status_events(db, notifier, chat, users):
    stream = event_stream(FakeRequest(), notifier, "C1", keepalive=1)
    await stream.__anext__()

    message = await chat_service.append_message(db, notifier, "C1", users["ustad"], "Assalamualaikum")
    frame = parse_frame(await stream.__anext__())
    assert frame["event"] == "message_appended"
    assert frame["id"] == message.id
    data = json.loads(frame["data"])
    assert data["body"] == "Assalamualaikum"
    assert data["status"] == "sent"

    await chat_service.update_message_status(db, notifier, "C1", message.id, users["orangtua"].id, "read")
    frame = parse_frame(await stream.__anext__())
    assert frame["event"] == "status_changed"
    assert frame["id"] == message.id
    assert json.loads(frame["data"])["status"] == "read"

    await stream.aclose()


async def test_stream_only_carries_its_own_chat(notifier):
    stream = event_stream(FakeRequest(), notifier, "C1", keepalive=0.05)
    await stream.__anext__()

    notifier.dispatch(MessageAppended(chat_id="C2", message=make_message(chat_id="C2")))
    assert await stream.__anext__() == ": keep-alive\n\n"

    await stream.aclose()


async def test_stream_sends_keepalive_when_idle(notifier):
    stream = event_stream(FakeRequest(), notifier, "C1", keepalive=0.01)
    await stream.__anext__()

    assert await stream.__anext__() == ": keep-alive\n\n"
    await stream.aclose()


async def test_stream_ends_when_client_leaves(notifier):
    request = FakeRequest()
    stream = event_stream(request, notifier, "C1", keepalive=0.01)
    await stream.__anext__()

    request.disconnected = True
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert notifier.subscriber_count("C1") == 0


async def test_stream_ends_when_it_falls_behind():
    slow = ChatNotifier(queue_size=1)
    stream = event_stream(FakeRequest(), slow, "C1", keepalive=1)
    await stream.__anext__()

    for i in range(2):
        slow.dispatch(MessageAppended(chat_id="C1", message=make_message(f"m{i}")))

    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    assert slow.subscriber_count("C1") == 0


# --- Stream endpoint guards ---

async def test_stream_without_token(client, chat, users):
    res = await client.get("/api/chat/stream", params={"userId": users["ustad"].id, "chatId": "C1"})
    assert res.status_code == 401


async def test_stream_requires_both_parameters(client, auth, chat, users):
    res = await client.get("/api/chat/stream", params={"chatId": "C1"}, headers=auth(users["ustad"]))
    assert res.status_code == 400


async def test_stream_user_must_match_session(client, auth, chat, users):
    res = await client.get(
        "/api/chat/stream",
        params={"userId": users["orangtua"].id, "chatId": "C1"},
        headers=auth(users["ustad"]),
    )
    assert res.status_code == 403


async def test_stream_token_from_query_still_checks_membership(client, auth, chat, users):
    outsider = users["orangtua2"]
    token = auth(outsider)["Authorization"].split(" ", 1)[1]

    res = await client.get("/api/chat/stream", params={"userId": outsider.id, "chatId": "C1", "token": token})
    assert res.status_code == 403

    res = await client.get("/api/chat/stream", params={"userId": outsider.id, "chatId": "nope", "token": token})
    assert res.status_code == 404


async def test_stream_opens_for_a_participant(client, auth, chat, users):
    # Queue of one so two events close the stream and the response completes
    small = ChatNotifier(queue_size=1)
    app.dependency_overrides[get_notifier] = lambda: small
    ustad = users["ustad"]

    request = asyncio.create_task(
        client.get("/api/chat/stream", params={"userId": ustad.id, "chatId": "C1"}, headers=auth(ustad))
    )
    for _ in range(200):
        if small.subscriber_count("C1"):
            break
        await asyncio.sleep(0.01)
    assert small.subscriber_count("C1") == 1

    for i in range(2):
        small.dispatch(MessageAppended(chat_id="C1", message=make_message(f"m{i}")))
    res = await asyncio.wait_for(request, timeout=5)

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"
    assert res.text.startswith("retry: 3000\n\n")
    assert small.active_connections == 0
