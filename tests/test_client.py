from typing import Any, Dict, List

import pytest

from core.answers import answer
from core.client import ZulipTrioClient, event_from_zulip, stream_peer_id
from core.errors import SessionExpired, TransportError
from core.matchers import find_pattern_handler
from core.models import (
    MessageTypeFilter,
    PatternMatch,
    PollCursor,
    RunConfiguration,
    pattern_match,
)
from core.registry import CommandRegistry


class FakeZulip:
    """Stands in for zulip.Client; each method returns the scripted response."""

    def __init__(self, **responses: Any) -> None:
        self.responses: Dict[str, List[Dict[str, Any]]] = {
            k: list(v) for k, v in responses.items()
        }
        self.calls: List[Any] = []

    def _next(self, name: str, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append((name, args, kwargs))
        return self.responses[name].pop(0)

    def get_profile(self) -> Dict[str, Any]:
        return self._next("get_profile")

    def register(self, **kwargs: Any) -> Dict[str, Any]:
        return self._next("register", **kwargs)

    def get_events(self, **kwargs: Any) -> Dict[str, Any]:
        return self._next("get_events", **kwargs)

    def send_message(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return self._next("send_message", request)


def _stream_message(**overrides: Any) -> Dict[str, Any]:
    msg = {
        "id": 31,
        "type": "stream",
        "stream_id": 7,
        "subject": "deploys",
        "sender_id": 42,
        "content": "ping",
    }
    msg.update(overrides)
    return msg


def test_event_from_zulip_stream_and_private() -> None:
    stream = event_from_zulip(_stream_message())
    assert (stream.peer_id, stream.sender_id, stream.text, stream.message_id) == (
        2000000007,
        42,
        "ping",
        31,
    )

    private = event_from_zulip({"id": 2, "type": "private", "sender_id": 42, "content": "hey"})
    assert private.peer_id == 42
    assert private.attachments == []


def test_event_from_zulip_truncates_preview() -> None:
    assert event_from_zulip(_stream_message(content="abcdef"), preview_length=3).text == "abc"
    assert event_from_zulip(_stream_message(content="abcdef"), preview_length=0).text == "abcdef"


@pytest.mark.trio
async def test_authorize_and_bootstrap() -> None:
    fake = FakeZulip(
        get_profile=[{"result": "success", "user_id": 99, "full_name": "Bot"}],
        register=[{"result": "success", "queue_id": "q-1", "last_event_id": -1}],
    )
    client = ZulipTrioClient(fake)

    profile = await client.authorize()
    cursor = await client.bootstrap_cursor(True, 3)

    assert profile["user_id"] == 99
    assert cursor == PollCursor(ts="q-1", pts=-1)
    assert fake.calls[1][2]["event_types"] == ["message"]


@pytest.mark.trio
async def test_authorize_failure_raises() -> None:
    client = ZulipTrioClient(FakeZulip(get_profile=[{"result": "error", "msg": "bad key"}]))
    with pytest.raises(TransportError):
        await client.authorize()


@pytest.mark.trio
async def test_unauthorized_transport_raises() -> None:
    with pytest.raises(TransportError):
        await ZulipTrioClient().bootstrap_cursor(True, 3)


@pytest.mark.trio
async def test_fetch_batch_maps_messages_and_advances_pts() -> None:
    fake = FakeZulip(
        get_profile=[{"result": "success", "user_id": 99}],
        get_events=[
            {
                "result": "success",
                "events": [
                    {"id": 4, "type": "heartbeat"},
                    {"id": 5, "type": "message", "message": _stream_message()},
                    {"id": 6, "type": "message", "message": _stream_message(sender_id=99)},
                    {
                        "id": 7,
                        "type": "message",
                        "message": {"id": 40, "type": "private", "sender_id": 8, "content": "hi"},
                    },
                ],
            }
        ],
    )
    client = ZulipTrioClient(fake)
    await client.authorize()

    batch = await client.fetch_batch(PollCursor(ts="q-1", pts=3), RunConfiguration())

    assert batch.new_pts == 7
    # the bot's own message is skipped
    assert [e.peer_id for e in batch.events] == [stream_peer_id(7), 8]
    assert fake.calls[-1][2] == {"queue_id": "q-1", "last_event_id": 3, "dont_block": False}


@pytest.mark.trio
async def test_fetch_batch_applies_message_type_filter() -> None:
    fake = FakeZulip(
        get_events=[
            {
                "result": "success",
                "events": [
                    {"id": 1, "type": "message", "message": _stream_message()},
                    {
                        "id": 2,
                        "type": "message",
                        "message": {"id": 9, "type": "private", "sender_id": 8, "content": "x"},
                    },
                ],
            }
        ],
    )
    client = ZulipTrioClient(fake)
    config = RunConfiguration(message_type_filter=MessageTypeFilter.DIRECT)

    batch = await client.fetch_batch(PollCursor(ts="q", pts=0), config)

    assert [e.message_id for e in batch.events] == [9]
    assert batch.new_pts == 2


@pytest.mark.trio
async def test_bad_queue_is_session_expired() -> None:
    fake = FakeZulip(
        get_events=[{"result": "error", "code": "BAD_EVENT_QUEUE_ID", "msg": "Bad event queue id: q"}]
    )
    with pytest.raises(SessionExpired):
        await ZulipTrioClient(fake).fetch_batch(PollCursor(ts="q", pts=0), RunConfiguration())


@pytest.mark.trio
async def test_other_errors_are_transport_errors() -> None:
    fake = FakeZulip(get_events=[{"result": "error", "msg": "boom"}])
    with pytest.raises(TransportError) as exc_info:
        await ZulipTrioClient(fake).fetch_batch(PollCursor(ts="q", pts=0), RunConfiguration())
    assert not isinstance(exc_info.value, SessionExpired)


@pytest.mark.trio
async def test_rate_limited_fetch_returns_empty_batch() -> None:
    fake = FakeZulip(
        get_events=[{"result": "error", "code": "RATE_LIMIT_HIT", "retry-after": 0.01}]
    )
    batch = await ZulipTrioClient(fake).fetch_batch(PollCursor(ts="q", pts=12), RunConfiguration())
    assert batch.events == ()
    assert batch.new_pts == 12


@pytest.mark.trio
async def test_send_replies_to_last_topic_with_local_id() -> None:
    fake = FakeZulip(
        register=[{"result": "success", "queue_id": "q-1", "last_event_id": -1}],
        get_events=[
            {"result": "success", "events": [{"id": 1, "type": "message", "message": _stream_message()}]}
        ],
        send_message=[{"result": "success", "id": 500}, {"result": "success", "id": 501}],
    )
    client = ZulipTrioClient(fake)
    cursor = await client.bootstrap_cursor(True, 3)
    await client.fetch_batch(cursor, RunConfiguration())

    assert await client.send(stream_peer_id(7), "pong", 1234) == 500
    assert await client.send(42, "hi", 99) == 501

    stream_request = fake.calls[-2][1][0]
    assert stream_request == {
        "type": "stream",
        "to": 7,
        "topic": "deploys",
        "content": "pong",
        "queue_id": "q-1",
        "local_id": "1234",
    }
    private_request = fake.calls[-1][1][0]
    assert private_request["type"] == "private"
    assert private_request["to"] == [42]
    assert private_request["local_id"] == "99"


@pytest.mark.trio
async def test_send_failure_raises() -> None:
    fake = FakeZulip(send_message=[{"result": "error", "msg": "no such user"}])
    with pytest.raises(TransportError):
        await ZulipTrioClient(fake).send(42, "hi", 1)


@pytest.mark.trio
async def test_send_retries_rate_limits() -> None:
    fake = FakeZulip(
        send_message=[
            {"result": "error", "code": "RATE_LIMIT_HIT", "retry-after": 0.01},
            {"result": "success", "id": 77},
        ]
    )
    assert await ZulipTrioClient(fake).send(42, "hi", 1) == 77


@pytest.mark.trio
async def test_stream_and_user_with_same_id_are_distinct_peers() -> None:
    fake = FakeZulip(
        get_events=[
            {
                "result": "success",
                "events": [
                    {"id": 1, "type": "message", "message": _stream_message(stream_id=7)},
                    {
                        "id": 2,
                        "type": "message",
                        "message": {"id": 50, "type": "private", "sender_id": 7, "content": "hi"},
                    },
                ],
            }
        ],
        send_message=[{"result": "success", "id": 600}],
    )
    client = ZulipTrioClient(fake)

    batch = await client.fetch_batch(PollCursor(ts="q", pts=0), RunConfiguration())
    stream_event, direct_event = batch.events

    assert stream_event.peer_id != direct_event.peer_id
    registry = CommandRegistry("message", PatternMatch)
    registry.store(pattern_match(".", scope=direct_event.peer_id), answer("dm only"))
    assert find_pattern_handler(registry, direct_event) is not None
    assert find_pattern_handler(registry, stream_event) is None

    await client.send(direct_event.peer_id, "reply to DM", 1)
    request = fake.calls[-1][1][0]
    assert request["type"] == "private"
    assert request["to"] == [7]


@pytest.mark.trio
async def test_send_to_unseen_stream_uses_default_topic() -> None:
    fake = FakeZulip(send_message=[{"result": "success", "id": 601}])

    await ZulipTrioClient(fake).send(stream_peer_id(12), "hello", 1)

    request = fake.calls[-1][1][0]
    assert (request["type"], request["to"], request["topic"]) == ("stream", 12, "general")
