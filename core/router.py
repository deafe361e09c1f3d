"""The poll-consume loop.

The Router owns the poll cursor. It bootstraps the cursor, fetches batches
from the transport and feeds their events, one at a time and in batch order,
to the Dispatcher. Errors never end the loop; only the cancellation token
does.

States::

    STARTING -> POLLING <-> PROCESSING_BATCH -> ... -> STOPPED
"""
import logging
from enum import Enum
from typing import Any, Callable, Optional

import trio

from core.dispatcher import Dispatcher
from core.errors import SessionExpired
from core.models import Batch, CancellationToken, PollCursor, RunConfiguration
from core.transport import Transport

logger = logging.getLogger(__name__)


class RouterState(Enum):
    STARTING = "starting"
    POLLING = "polling"
    PROCESSING_BATCH = "processing_batch"
    STOPPED = "stopped"


class Router:
    """Runs the polling loop for one bot instance.

    Attributes:
        state: Current loop state
        cursor: Current poll cursor, None until bootstrapped
        error_backoff: Seconds to sleep after a failed fetch or bootstrap
    """

    def __init__(
        self,
        transport: Transport,
        dispatcher: Dispatcher,
        client: Any,
        run_configuration: Callable[[], RunConfiguration],
        error_backoff: float = 0.0,
    ) -> None:
        self._transport = transport
        self._dispatcher = dispatcher
        self._client = client
        self._run_configuration = run_configuration
        self.error_backoff = error_backoff
        self.state = RouterState.STOPPED
        self.cursor: Optional[PollCursor] = None

    async def run(self, token: CancellationToken) -> None:
        """Poll and dispatch until the token is cancelled."""
        self.state = RouterState.STARTING
        try:
            self.cursor = await self._bootstrap(token)
            while not token.cancelled:
                self.state = RouterState.POLLING
                batch = await self._fetch(token)
                if batch is None or token.cancelled:
                    continue
                self.state = RouterState.PROCESSING_BATCH
                await self._process_batch(batch, token)
        finally:
            self.state = RouterState.STOPPED
            logger.info("Polling loop stopped")

    async def _bootstrap(self, token: CancellationToken) -> Optional[PollCursor]:
        """Obtain a fresh cursor, retrying until it succeeds or we are cancelled."""
        while not token.cancelled:
            config = self._run_configuration()
            try:
                cursor = await self._transport.bootstrap_cursor(
                    config.need_extended_cursor, config.protocol_version
                )
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.warning("Cursor bootstrap failed: %r", e)
                await self._dispatcher.report_library_error(e, token)
                await self._backoff()
                continue
            logger.info("Cursor bootstrapped ts=%s pts=%s", cursor.ts, cursor.pts)
            return cursor
        return None

    async def _fetch(self, token: CancellationToken) -> Optional[Batch]:
        config = self._run_configuration()
        try:
            return await self._transport.fetch_batch(self.cursor, config)
        except SessionExpired as e:
            logger.info("Poll session expired, bootstrapping a new cursor")
            cursor = await self._bootstrap(token)
            if cursor is not None:
                self.cursor = cursor
            await self._dispatcher.report_library_error(e, token)
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Transient transport failures keep the loop alive
            logger.warning("Fetching a batch failed: %r", e)
            await self._dispatcher.report_library_error(e, token)
            await self._backoff()
        return None

    async def _process_batch(self, batch: Batch, token: CancellationToken) -> None:
        if batch.events:
            logger.debug("Processing batch of %d events", len(batch.events))
        for event in batch.events:
            if token.cancelled:
                return
            await self._dispatcher.handle_event(self._client, event, token)
        # ts is left at its bootstrap value; only pts follows the stream
        self.cursor = self.cursor.advance(batch.new_pts)

    async def _backoff(self) -> None:
        if self.error_backoff > 0:
            await trio.sleep(self.error_backoff)
