"""Contract between the router and the chat platform client.

The router only depends on the Transport protocol below. Handlers receive a
BotClient, which wraps the transport and stamps every outgoing message with a
fresh de-duplication id so identical texts are never coalesced.
"""
import logging
import secrets
from typing import Any, Dict, Optional, Protocol

from core.models import Batch, PollCursor, RunConfiguration

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the router needs from a chat platform client."""

    async def authorize(self, credentials: Optional[Dict[str, Any]] = None) -> Any:
        ...

    async def bootstrap_cursor(
        self, need_extended_cursor: bool, protocol_version: int
    ) -> PollCursor:
        ...

    async def fetch_batch(
        self, cursor: PollCursor, config: RunConfiguration
    ) -> Batch:
        """Return the next batch; raise SessionExpired if the cursor lapsed."""
        ...

    async def send(self, peer_id: int, text: str, dedupe_id: int) -> Any:
        ...

    def close(self) -> None:
        ...


def new_dedupe_id() -> int:
    """Return a random 32-bit id for one outgoing message."""
    return secrets.randbits(32)


class BotClient:
    """Handle passed to every handler.

    Attributes:
        transport: The underlying platform client, for calls not wrapped here
    """

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    async def send_message(self, peer_id: int, text: str) -> Any:
        """Send text to a peer with a freshly generated de-duplication id."""
        dedupe_id = new_dedupe_id()
        logger.debug("Sending message to peer_id=%s dedupe_id=%s", peer_id, dedupe_id)
        return await self.transport.send(peer_id, text, dedupe_id)
