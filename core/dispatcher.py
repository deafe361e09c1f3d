"""Event dispatching system for routing chat events to registered handlers.

The Dispatcher owns one registry or store per category. It validates an
event, classifies it, and hands it to the matcher or store for that category.
Errors raised while handling one event are isolated and delivered to the
bot-level error handler.
"""
import logging
from typing import Any, Dict

from core.classifier import classify
from core.errors import RoutingError
from core.matchers import dispatch_pattern, dispatch_sticker
from core.models import CancellationToken, Category, Event, IdentityMatch, PatternMatch
from core.registry import BotErrorStore, CommandRegistry, EventStore, LibraryErrorStore

logger = logging.getLogger(__name__)


PATTERN_CATEGORIES = (Category.MESSAGE, Category.REPLY, Category.FORWARD)

EVENT_STORE_CATEGORIES = tuple(
    c for c in Category if c not in PATTERN_CATEGORIES and c != Category.STICKER
)


class Dispatcher:
    """Routes events to the handlers registered for their category.

    Attributes:
        bot_errors: Handler for errors raised while handling one event
        library_errors: Handler for errors raised by the polling loop
    """

    def __init__(self) -> None:
        self._registries: Dict[Category, CommandRegistry] = {
            c: CommandRegistry(c.value, PatternMatch) for c in PATTERN_CATEGORIES
        }
        self._registries[Category.STICKER] = CommandRegistry(
            Category.STICKER.value, IdentityMatch
        )
        self._stores: Dict[Category, EventStore] = {
            c: EventStore(c.value) for c in EVENT_STORE_CATEGORIES
        }
        self.bot_errors = BotErrorStore("bot exception")
        self.library_errors = LibraryErrorStore("exception")

    def registry(self, category: Category) -> CommandRegistry:
        """Return the match-specification registry for a category.

        Raises:
            KeyError: If the category uses a single-handler store instead
        """
        return self._registries[category]

    def store(self, category: Category) -> EventStore:
        """Return the single-handler store for a media or chat-action category."""
        return self._stores[category]

    async def dispatch_event(
        self, client: Any, event: Event, token: CancellationToken
    ) -> None:
        """Validate, classify and route one event.

        Raises:
            RoutingError: If the event lacks ids, has an unknown action, or is
                a sticker event without exactly one sticker
        """
        if event.peer_id is None:
            raise RoutingError("event has no peer id", event=event)
        if event.sender_id is None:
            raise RoutingError("event has no sender id", event=event)

        category = classify(event)
        logger.debug(
            "Dispatching message_id=%s peer_id=%s as %s",
            event.message_id,
            event.peer_id,
            category.value,
        )

        if category == Category.STICKER:
            await dispatch_sticker(self._registries[category], client, event, token)
        elif category in self._registries:
            await dispatch_pattern(self._registries[category], client, event, token)
        else:
            await self._stores[category].trigger(client, event, token)

    async def handle_event(
        self, client: Any, event: Event, token: CancellationToken
    ) -> None:
        """Dispatch one event, never letting its errors escape.

        Errors go to the bot-level error handler; with none registered they
        are dropped.
        """
        try:
            await self.dispatch_event(client, event, token)
        except Exception as e:  # pylint: disable=broad-exception-caught
            # One bad event or handler must not stop the rest of the batch
            await self._report_event_error(client, event, e, token)

    async def _report_event_error(
        self, client: Any, event: Event, error: Exception, token: CancellationToken
    ) -> None:
        try:
            handled = await self.bot_errors.trigger(client, event, error, token)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Bot error handler failed for message_id=%s", event.message_id)
            return
        if not handled:
            logger.debug(
                "Dropping error for message_id=%s: %r", event.message_id, error
            )

    async def report_library_error(
        self, error: Exception, token: CancellationToken
    ) -> None:
        """Deliver a polling-loop error to the library-level error handler."""
        try:
            handled = await self.library_errors.trigger(error, token)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("Library error handler failed")
            return
        if not handled:
            logger.debug("Dropping polling error: %r", error)
