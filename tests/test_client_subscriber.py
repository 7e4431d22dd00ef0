import asyncio
import json

import httpx
import pytest

from autopecas.client.subscriber import (
    ConversationListSubscriber,
    ConversationSubscriber,
    HttpMessageFetcher,
)


class FakeServer:
    def __init__(self):
        self.messages = {42: [], 7: []}
        self.calls = 0
        self.fail = False

    async def fetch(self, conversation_id):
        self.calls += 1
        if self.fail:
            raise httpx.ConnectError("offline")
        return [dict(m) for m in self.messages[conversation_id]]

    def post(self, conversation_id, content):
        message = {"id": len(self.messages[conversation_id]) + 1, "conversationId": conversation_id, "content": content}
        self.messages[conversation_id].append(message)
        return {"type": "new_message", "data": message}


async def _frames(items):
    for item in items:
        yield item


def test_notify_only_accepts_new_message_for_same_conversation():
    subscriber = ConversationSubscriber(42, FakeServer().fetch)

    assert subscriber.notify({"type": "new_message", "data": {"conversationId": 42}}) is True
    assert subscriber.notify({"type": "new_message", "data": {"conversationId": 7}}) is False
    assert subscriber.notify({"type": "typing", "data": {"conversationId": 42}}) is False
    assert subscriber.notify({"type": "new_message"}) is False


def test_list_subscriber_accepts_any_new_message():
    subscriber = ConversationListSubscriber(FakeServer().fetch)

    assert subscriber.notify({"type": "new_message", "data": {"conversationId": 7}}) is True


def test_listen_ignores_malformed_frames():
    async def scenario():
        subscriber = ConversationSubscriber(42, FakeServer().fetch)
        frames = [
            "not json",
            b"\xff\xfe",
            json.dumps([1, 2, 3]),
            json.dumps({"type": "new_message", "data": {"conversationId": 42}}),
            {"type": "new_message", "data": {"conversationId": 42}},
            json.dumps({"type": "new_message", "data": {"conversationId": 99}}),
        ]
        return await subscriber.listen(_frames(frames))

    assert asyncio.run(scenario()) == 2


def test_push_event_triggers_refetch_instead_of_local_append():
    async def scenario():
        server = FakeServer()
        subscriber = ConversationSubscriber(42, server.fetch, interval=30)
        subscriber.start()
        await asyncio.sleep(0.01)
        assert subscriber.messages == []

        event = server.post(42, "Tem filtro?")
        subscriber.notify(event)
        await asyncio.sleep(0.05)
        await subscriber.stop()
        return server, subscriber

    server, subscriber = asyncio.run(scenario())

    assert subscriber.messages == server.messages[42]
    assert subscriber.ticks == 2


def test_polling_only_client_converges_with_push_client():
    async def scenario():
        server = FakeServer()
        pushed = ConversationSubscriber(42, server.fetch, interval=30)
        polling_only = ConversationSubscriber(42, server.fetch, interval=0.05)
        pushed.start()
        polling_only.start()
        await asyncio.sleep(0.01)

        for content in ("oi", "cód FO-123", "quero comprar"):
            pushed.notify(server.post(42, content))
        await asyncio.sleep(0.2)

        await pushed.stop()
        await polling_only.stop()
        return server, pushed, polling_only

    server, pushed, polling_only = asyncio.run(scenario())

    assert pushed.messages == server.messages[42]
    assert polling_only.messages == server.messages[42]


def test_fetch_failure_keeps_cached_list():
    async def scenario():
        server = FakeServer()
        server.post(42, "primeira")
        subscriber = ConversationSubscriber(42, server.fetch, interval=30)
        await subscriber.refresh()

        server.fail = True
        await subscriber._tick()
        return subscriber

    subscriber = asyncio.run(scenario())

    assert [m["content"] for m in subscriber.messages] == ["primeira"]


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        ConversationSubscriber(42, FakeServer().fetch, interval=0)


def test_http_fetcher_reads_messages_and_conversations():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/conversations/42/messages":
            return httpx.Response(200, json=[{"id": 1, "conversationId": 42}])
        if request.url.path == "/api/conversations":
            return httpx.Response(200, json=[{"id": 42}])
        return httpx.Response(404)

    async def scenario():
        client = httpx.AsyncClient(base_url="http://api.test", transport=httpx.MockTransport(handler))
        fetcher = HttpMessageFetcher("http://api.test", client=client)
        messages = await fetcher(42)
        conversations = await fetcher.conversations()
        with pytest.raises(httpx.HTTPStatusError):
            await fetcher(7)
        await client.aclose()
        return messages, conversations

    messages, conversations = asyncio.run(scenario())

    assert messages == [{"id": 1, "conversationId": 42}]
    assert conversations == [{"id": 42}]
