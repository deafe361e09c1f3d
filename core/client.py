"""Zulip transport for the command router.

Wraps the blocking ``zulip.Client`` with trio.to_thread.run_sync and maps the
Zulip event queue onto the router's poll cursor:

- ``ts`` is the event queue id returned by ``register``
- ``pts`` is the last event id seen on that queue
- ``BAD_EVENT_QUEUE_ID`` (the queue was garbage collected) raises
  SessionExpired, after which the router registers a new queue

Rate Limiting Strategy:
----------------------
Responses carrying ``RATE_LIMIT_HIT`` are waited out using the server's
``retry-after`` hint. A rate-limited poll returns an empty batch so the loop
simply polls again; a rate-limited send is retried a few times.

Peers: stream and user ids are separate Zulip namespaces, so stream peers are
offset by STREAM_PEER_OFFSET and private messages use the sender's user id
as is. Replies to a stream go to the topic the last message of that stream
was posted in.
"""
import logging
import os
import time
from typing import Any, Dict, List, Optional

import trio
import zulip

from core.errors import SessionExpired, TransportError
from core.models import Batch, Event, MessageTypeFilter, PollCursor, RunConfiguration

logger = logging.getLogger(__name__)


DEFAULT_TOPIC = "general"
STREAM_PEER_OFFSET = 2000000000

_MESSAGE_TYPES = {
    "private": MessageTypeFilter.DIRECT,
    "stream": MessageTypeFilter.GROUP,
}


def stream_peer_id(stream_id: Optional[int]) -> Optional[int]:
    """Peer id of a stream; None stays None so the router rejects the event."""
    if stream_id is None:
        return None
    return STREAM_PEER_OFFSET + stream_id


def is_stream_peer(peer_id: int) -> bool:
    return peer_id > STREAM_PEER_OFFSET


def event_from_zulip(
    message: Dict[str, Any], preview_length: Optional[int] = None
) -> Event:
    """Convert a Zulip message dictionary into an Event.

    Args:
        message: The ``message`` object of a Zulip message event
        preview_length: Truncate the text to this many characters (0 = off)
    """
    if message.get("type") == "stream":
        peer_id = stream_peer_id(message.get("stream_id"))
    else:
        peer_id = message.get("sender_id")

    text = message.get("content")
    if text is not None and preview_length:
        text = text[:preview_length]

    return Event(
        peer_id=peer_id,
        sender_id=message.get("sender_id"),
        text=text,
        message_id=message.get("id"),
        raw=message,
    )


class ZulipTrioClient:
    """
    Trio-friendly wrapper around zulip.Client implementing the router transport.
    Uses trio.to_thread.run_sync for blocking calls.
    """

    def __init__(self, client: Optional[zulip.Client] = None) -> None:
        self._client = client
        self._own_user_id: Optional[int] = None
        self._queue_id: Optional[str] = None
        # stream_id -> topic of the last message seen in that stream
        self._stream_topics: Dict[int, str] = {}

    @classmethod
    def from_env_or_rc(cls) -> "ZulipTrioClient":
        """Create a ZulipTrioClient from environment variables or ~/.zuliprc."""
        config_file = os.environ.get("ZULIP_CONFIG_FILE")  # optional override
        if config_file:
            client = zulip.Client(config_file=config_file)
        else:
            # This looks for ~/.zuliprc or equivalent env vars.
            client = zulip.Client()
        return cls(client)

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Dict[str, Any]:
        if self._client is None:
            raise TransportError("transport is not authorized")
        func = getattr(self._client, method)
        return await trio.to_thread.run_sync(lambda: func(*args, **kwargs))

    async def authorize(self, credentials: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create the Zulip client (if needed) and verify it by fetching the profile.

        Args:
            credentials: Keyword arguments for zulip.Client (email, api_key,
                site or config_file); when omitted the existing client, or
                one built from the environment, is used

        Returns:
            The bot's own profile

        Raises:
            TransportError: If the server rejects the credentials
        """
        if credentials:
            self._client = await trio.to_thread.run_sync(
                lambda: zulip.Client(**credentials)
            )
        elif self._client is None:
            self._client = (await trio.to_thread.run_sync(self.from_env_or_rc))._client

        res = await self._call("get_profile")
        if res.get("result") != "success":
            raise TransportError(f"authorization failed: {res.get('msg', res)}")
        self._own_user_id = res.get("user_id")
        logger.info(
            "Authenticated as: %s (email: %s, user_id: %s)",
            res.get("full_name"),
            res.get("email"),
            res.get("user_id"),
        )
        return res

    async def bootstrap_cursor(
        self, need_extended_cursor: bool, protocol_version: int
    ) -> PollCursor:
        """Register a message event queue and return its cursor.

        Zulip always reports last_event_id and has a single queue protocol,
        so both arguments only show up in the debug log.
        """
        logger.debug(
            "Registering event queue (extended=%s, version=%s)",
            need_extended_cursor,
            protocol_version,
        )
        res = await self._call(
            "register",
            event_types=["message"],
            client_gravatar=False,
            apply_markdown=False,
        )
        if res.get("result") != "success":
            raise TransportError(f"register failed: {res.get('msg', res)}")
        self._queue_id = res["queue_id"]
        logger.info("Registered event queue id=%s", self._queue_id)
        return PollCursor(ts=res["queue_id"], pts=res.get("last_event_id", -1))

    async def fetch_batch(self, cursor: PollCursor, config: RunConfiguration) -> Batch:
        """Long-poll the event queue for the next batch.

        The server holds the connection open until events are available or
        its own timeout expires, in which case the batch is empty.

        Raises:
            SessionExpired: If the event queue no longer exists
            TransportError: On any other error response
        """
        logger.debug("Polling for events (long-poll)...")
        res = await self._call(
            "get_events",
            queue_id=cursor.ts,
            last_event_id=cursor.pts,
            dont_block=False,
        )
        self._log_rate_limit_info(res)

        if res.get("code") == "RATE_LIMIT_HIT":
            retry_after = self._get_rate_limit_reset(res)
            logger.warning(
                "Rate limit hit. Waiting %s seconds before retry. Message: %s",
                retry_after,
                res.get("msg", "No message"),
            )
            await trio.sleep(retry_after)
            return Batch(events=(), new_pts=cursor.pts)

        if res.get("code") == "BAD_EVENT_QUEUE_ID":
            raise SessionExpired(res.get("msg", "event queue expired"))

        if res.get("result") != "success":
            raise TransportError(f"get_events failed: {res.get('msg', res)}")

        last_event_id = cursor.pts
        events: List[Event] = []
        for raw in res.get("events", []):
            event_id = raw.get("id")
            if event_id is not None:
                last_event_id = event_id if last_event_id is None else max(last_event_id, event_id)
            if raw.get("type") != "message":
                continue
            event = self._accept(raw.get("message", {}), config)
            if event is not None:
                events.append(event)
        return Batch(events=tuple(events), new_pts=last_event_id)

    def _accept(
        self, message: Dict[str, Any], config: RunConfiguration
    ) -> Optional[Event]:
        if self._own_user_id is not None and message.get("sender_id") == self._own_user_id:
            return None
        kind = _MESSAGE_TYPES.get(message.get("type"))
        if kind is None:
            return None
        if config.message_type_filter is not None and kind != config.message_type_filter:
            return None
        if kind == MessageTypeFilter.GROUP and message.get("stream_id") is not None:
            self._stream_topics[message["stream_id"]] = message.get("subject") or DEFAULT_TOPIC
        return event_from_zulip(message, config.preview_length)

    def _get_rate_limit_reset(self, response: Dict[str, Any]) -> float:
        """Extract rate limit reset time from response.

        Args:
            response: API response that may contain rate limit info

        Returns:
            Number of seconds to wait before retrying
        """
        retry_after = response.get("retry-after")
        if retry_after:
            try:
                return float(retry_after)
            except (ValueError, TypeError):
                pass

        reset_time = response.get("x-ratelimit-reset") or response.get("X-RateLimit-Reset")
        if reset_time:
            try:
                return max(0.0, float(reset_time) - time.time())
            except (ValueError, TypeError):
                pass

        logger.warning("Could not determine rate limit reset time, using default 60s")
        return 60.0

    def _log_rate_limit_info(self, response: Dict[str, Any]) -> None:
        remaining = response.get("x-ratelimit-remaining") or response.get("X-RateLimit-Remaining")
        limit = response.get("x-ratelimit-limit") or response.get("X-RateLimit-Limit")

        if remaining is not None and limit is not None:
            try:
                remaining_count = int(remaining)
                total_limit = int(limit)
                # Warn if we're using more than 80% of the limit
                if remaining_count < (total_limit * 0.2):
                    logger.warning(
                        "Approaching rate limit: %s/%s requests remaining",
                        remaining_count,
                        total_limit,
                    )
            except (ValueError, TypeError):
                pass

    def _message_request(self, peer_id: int, text: str, dedupe_id: int) -> Dict[str, Any]:
        if is_stream_peer(peer_id):
            stream_id = peer_id - STREAM_PEER_OFFSET
            request: Dict[str, Any] = {
                "type": "stream",
                "to": stream_id,
                "topic": self._stream_topics.get(stream_id, DEFAULT_TOPIC),
                "content": text,
            }
        else:
            request = {"type": "private", "to": [peer_id], "content": text}
        # Zulip only honours local_id together with the queue it echoes on
        if self._queue_id is not None:
            request["queue_id"] = self._queue_id
            request["local_id"] = str(dedupe_id)
        return request

    async def send(self, peer_id: int, text: str, dedupe_id: int) -> Optional[int]:
        """Send a message to a peer with rate limit handling.

        Returns:
            Id of the sent message

        Raises:
            TransportError: If the message could not be sent
        """
        request = self._message_request(peer_id, text, dedupe_id)
        max_retries = 3

        for attempt in range(max_retries):
            res = await self._call("send_message", request)
            self._log_rate_limit_info(res)

            if res.get("code") == "RATE_LIMIT_HIT" and attempt < max_retries - 1:
                retry_after = self._get_rate_limit_reset(res)
                logger.warning(
                    "Rate limit hit sending message. "
                    "Waiting %s seconds (attempt %s/%s)",
                    retry_after, attempt + 1, max_retries
                )
                await trio.sleep(retry_after)
                continue

            if res.get("result") == "success":
                return res.get("id")

            raise TransportError(f"send_message to {peer_id} failed: {res.get('msg', res)}")

        raise TransportError(f"send_message to {peer_id} failed after {max_retries} attempts")

    def close(self) -> None:
        """Close the HTTP session held by the zulip client, if any."""
        session = getattr(self._client, "session", None)
        if session is not None:
            session.close()
        self._queue_id = None
        self._stream_topics.clear()
