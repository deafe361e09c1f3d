"""Public entry point: register handlers, then run the polling loop.

Every registration method takes either a handler alone, which becomes the
category's fallback, or a match key followed by a handler. A key is a
PatternMatch/IdentityMatch, or the shorthand of a pattern string (text,
reply, forward) or a sticker id (sticker)::

    bot.on_text("^ping$", answer("pong"))
    bot.on_text(pattern_match("^hi", re.IGNORECASE, scope=2000000001), greet)
    bot.on_text(answer("I did not get that"))
    bot.on_sticker(9046, answer("nice sticker"))
"""
import logging
from typing import Any, Dict, Optional

from core.dispatcher import Dispatcher
from core.errors import ValidationError
from core.models import (
    CancellationToken,
    Category,
    RunConfiguration,
    pattern_match,
    sticker_match,
)
from core.registry import BotErrorHandler, CommandRegistry, Handler, LibraryErrorHandler
from core.router import Router
from core.transport import BotClient, Transport

logger = logging.getLogger(__name__)


class CommandBot:
    """Command router bound to one transport.

    Attributes:
        transport: Platform client used for polling and sending
        client: Handle passed to handlers
        dispatcher: Registries and stores for every category
        error_backoff: Seconds the loop sleeps after a failed fetch
    """

    def __init__(
        self,
        transport: Transport,
        run_configuration: Optional[RunConfiguration] = None,
        error_backoff: float = 0.0,
    ) -> None:
        self.transport = transport
        self.client = BotClient(transport)
        self.dispatcher = Dispatcher()
        self.error_backoff = error_backoff
        self._run_configuration = run_configuration or RunConfiguration()
        self._router: Optional[Router] = None

    # Lifecycle

    async def authorize(self, credentials: Optional[Dict[str, Any]] = None) -> Any:
        """Authenticate the transport; returns whatever session it reports."""
        session = await self.transport.authorize(credentials)
        logger.info("Transport authorized")
        return session

    def configure(self, configuration: RunConfiguration) -> None:
        """Replace the run configuration; picked up on the next poll cycle."""
        if not isinstance(configuration, RunConfiguration):
            raise ValidationError(f"expected a RunConfiguration, got {configuration!r}")
        self._run_configuration = configuration

    @property
    def run_configuration(self) -> RunConfiguration:
        return self._run_configuration

    @property
    def router(self) -> Optional[Router]:
        """Router of the current or last run() call."""
        return self._router

    async def run(self, token: Optional[CancellationToken] = None) -> None:
        """Poll and dispatch until token is cancelled."""
        token = token or CancellationToken()
        self._router = Router(
            transport=self.transport,
            dispatcher=self.dispatcher,
            client=self.client,
            run_configuration=lambda: self._run_configuration,
            error_backoff=self.error_backoff,
        )
        logger.info("Starting polling loop")
        await self._router.run(token)

    def close(self) -> None:
        """Release the transport's local resources."""
        self.transport.close()

    # Registration

    def on(
        self,
        category: Category,
        key_or_handler: Any,
        handler: Optional[Handler] = None,
    ) -> None:
        """Register a handler for any category.

        Raises:
            ValidationError: On an invalid key or handler, or a key given for
                a category that only takes a single handler
        """
        try:
            registry = self.dispatcher.registry(category)
        except KeyError:
            if handler is not None:
                raise ValidationError(
                    f"{category.value} handlers do not take a match key"
                ) from None
            self.dispatcher.store(category).set_handler(key_or_handler)
            return
        self._register(registry, category, key_or_handler, handler)

    @staticmethod
    def _register(
        registry: CommandRegistry,
        category: Category,
        key_or_handler: Any,
        handler: Optional[Handler],
    ) -> None:
        if handler is None:
            registry.set_handler(key_or_handler)
            return
        key = key_or_handler
        if category == Category.STICKER:
            if isinstance(key, int) and not isinstance(key, bool):
                key = sticker_match(key)
        elif isinstance(key, str):
            key = pattern_match(key)
        registry.store(key, handler)

    def on_text(self, key_or_handler: Any, handler: Optional[Handler] = None) -> None:
        self.on(Category.MESSAGE, key_or_handler, handler)

    def on_reply(self, key_or_handler: Any, handler: Optional[Handler] = None) -> None:
        self.on(Category.REPLY, key_or_handler, handler)

    def on_forward(self, key_or_handler: Any, handler: Optional[Handler] = None) -> None:
        self.on(Category.FORWARD, key_or_handler, handler)

    def on_sticker(self, key_or_handler: Any, handler: Optional[Handler] = None) -> None:
        self.on(Category.STICKER, key_or_handler, handler)

    def on_photo(self, handler: Handler) -> None:
        self.on(Category.PHOTO, handler)

    def on_voice(self, handler: Handler) -> None:
        self.on(Category.VOICE, handler)

    def on_video(self, handler: Handler) -> None:
        self.on(Category.VIDEO, handler)

    def on_audio(self, handler: Handler) -> None:
        self.on(Category.AUDIO, handler)

    def on_document(self, handler: Handler) -> None:
        self.on(Category.DOCUMENT, handler)

    def on_poll(self, handler: Handler) -> None:
        self.on(Category.POLL, handler)

    def on_chat_create(self, handler: Handler) -> None:
        self.on(Category.CHAT_CREATE, handler)

    def on_chat_invite_user(self, handler: Handler) -> None:
        self.on(Category.CHAT_INVITE_USER, handler)

    def on_chat_kick_user(self, handler: Handler) -> None:
        self.on(Category.CHAT_KICK_USER, handler)

    def on_chat_photo_update(self, handler: Handler) -> None:
        self.on(Category.CHAT_PHOTO_UPDATE, handler)

    def on_chat_photo_remove(self, handler: Handler) -> None:
        self.on(Category.CHAT_PHOTO_REMOVE, handler)

    def on_chat_pin_message(self, handler: Handler) -> None:
        self.on(Category.CHAT_PIN_MESSAGE, handler)

    def on_chat_unpin_message(self, handler: Handler) -> None:
        self.on(Category.CHAT_UNPIN_MESSAGE, handler)

    def on_chat_title_update(self, handler: Handler) -> None:
        self.on(Category.CHAT_TITLE_UPDATE, handler)

    def on_chat_invite_user_by_link(self, handler: Handler) -> None:
        self.on(Category.CHAT_INVITE_USER_BY_LINK, handler)

    def on_bot_exception(self, handler: BotErrorHandler) -> None:
        """Handler for errors raised while handling one event."""
        self.dispatcher.bot_errors.set_handler(handler)

    def on_exception(self, handler: LibraryErrorHandler) -> None:
        """Handler for errors raised by the polling loop itself."""
        self.dispatcher.library_errors.set_handler(handler)
