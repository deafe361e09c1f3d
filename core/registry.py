"""Handler storage for every event category.

A CommandRegistry maps match specifications to handlers and keeps one
fallback handler for events nothing matched. Categories without match
specifications (media kinds, chat actions, errors) use a single-handler
store instead.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from core.errors import ValidationError
from core.models import CancellationToken, Event, MatchSpec

logger = logging.getLogger(__name__)


Handler = Callable[[Any, Event, CancellationToken], Awaitable[None]]
BotErrorHandler = Callable[[Any, Event, Exception, CancellationToken], Awaitable[None]]
LibraryErrorHandler = Callable[[Exception, CancellationToken], Awaitable[None]]


def check_handler(handler: Any) -> None:
    """Raise ValidationError unless handler can be called."""
    if handler is None or not callable(handler):
        raise ValidationError(f"handler must be callable, got {handler!r}")


class _SingleHandlerStore:
    """Holds at most one handler; the last set_handler() call wins."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handler: Optional[Callable[..., Awaitable[None]]] = None

    @property
    def handler(self) -> Optional[Callable[..., Awaitable[None]]]:
        return self._handler

    def set_handler(self, handler: Callable[..., Awaitable[None]]) -> None:
        """Set or replace the handler.

        Args:
            handler: Async callable invoked by trigger()
        """
        check_handler(handler)
        if self._handler is not None:
            logger.debug("Replacing %s handler", self.name)
        self._handler = handler

    async def _invoke(self, *args: Any) -> bool:
        handler = self._handler
        if handler is None:
            return False
        await handler(*args)
        return True


class EventStore(_SingleHandlerStore):
    """Single handler for a media or chat-action category."""

    async def trigger(
        self, client: Any, event: Event, token: CancellationToken
    ) -> bool:
        """Invoke the handler if one is set.

        Returns:
            True if a handler ran, False if none was set
        """
        return await self._invoke(client, event, token)


class BotErrorStore(_SingleHandlerStore):
    """Handler for errors raised while handling a single event."""

    async def trigger(
        self,
        client: Any,
        event: Event,
        error: Exception,
        token: CancellationToken,
    ) -> bool:
        return await self._invoke(client, event, error, token)


class LibraryErrorStore(_SingleHandlerStore):
    """Handler for errors raised by the polling loop itself."""

    async def trigger(self, error: Exception, token: CancellationToken) -> bool:
        return await self._invoke(error, token)


class CommandRegistry:
    """Match-specification keyed handlers plus a fallback for one category.

    Entries are insert-if-absent: the first handler stored under a key is
    kept and later ones are ignored. The fallback is the opposite, every
    set_handler() call replaces it.

    Attributes:
        name: Category name, used in log messages
        spec_type: Match specification class accepted by store()
    """

    def __init__(self, name: str, spec_type: Type[Any]) -> None:
        self.name = name
        self.spec_type = spec_type
        self._entries: Dict[MatchSpec, Handler] = {}
        self._fallback = EventStore(f"{name} fallback")

    def __len__(self) -> int:
        return len(self._entries)

    def store(self, spec: MatchSpec, handler: Handler) -> bool:
        """Register handler under spec unless the key is already taken.

        Args:
            spec: Match specification; must be of this registry's spec_type
            handler: Async callable ``(client, event, token)``

        Returns:
            True if the handler was stored, False if the key already existed

        Raises:
            ValidationError: If spec or handler is invalid
        """
        if not isinstance(spec, self.spec_type):
            raise ValidationError(
                f"{self.name} handlers need a {self.spec_type.__name__}, got {spec!r}"
            )
        check_handler(handler)
        if spec in self._entries:
            logger.debug("Ignoring duplicate %s registration for %s", self.name, spec)
            return False
        self._entries.setdefault(spec, handler)
        return True

    def set_handler(self, handler: Handler) -> None:
        """Set or replace the fallback handler."""
        self._fallback.set_handler(handler)

    @property
    def fallback(self) -> Optional[Handler]:
        return self._fallback.handler

    def snapshot(self) -> Tuple[Tuple[MatchSpec, Handler], ...]:
        """Return the current entries in insertion order.

        The copy is taken in one step, so store() calls from other tasks or
        threads never disturb a matching pass already in progress.
        """
        return tuple(self._entries.items())

    async def trigger_fallback(
        self, client: Any, event: Event, token: CancellationToken
    ) -> bool:
        """Invoke the fallback handler; no-op when none is set."""
        return await self._fallback.trigger(client, event, token)
