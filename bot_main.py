"""Main entry point for the command router bot.

This module loads the YAML config, authorizes against Zulip, registers the
canned answers and error handlers, and runs the polling loop until the
process receives SIGINT or SIGTERM.
"""
import logging
import os
import signal

import trio

from config import ConfigManager
from core.bot import CommandBot
from core.client import ZulipTrioClient
from core.models import CancellationToken
from features.auto_answers import AutoAnswersFeature


logger = logging.getLogger(__name__)


async def log_bot_exception(client, event, error, token) -> None:
    logger.error(
        "Handler failed for message_id=%s peer_id=%s: %r",
        event.message_id,
        event.peer_id,
        error,
    )


async def log_library_exception(error, token) -> None:
    logger.warning("Polling error: %r", error)


async def stop_on_signal(token: CancellationToken) -> None:
    """Cancel the token on the first SIGINT or SIGTERM."""
    with trio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
        async for signum in signals:
            logger.info("Received signal %s, stopping after the current batch", signum)
            token.cancel()
            return


async def main() -> None:
    """Initialize and run the bot with all configured features."""
    config_path = os.environ.get("CHAT_ROUTER_CONFIG", "config.yaml")
    config_mgr = ConfigManager(config_path)
    config = config_mgr.load()

    logging.basicConfig(
        level=config.get("logging", {}).get("level", "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting chat-command-router")

    bot = CommandBot(
        transport=ZulipTrioClient(),
        run_configuration=config_mgr.run_configuration(),
        error_backoff=config_mgr.error_backoff(),
    )
    await bot.authorize()

    AutoAnswersFeature(bot=bot, config_mgr=config_mgr).register()
    bot.on_bot_exception(log_bot_exception)
    bot.on_exception(log_library_exception)

    token = CancellationToken()
    try:
        async with trio.open_nursery() as nursery:
            nursery.start_soon(stop_on_signal, token)

            async def event_loop() -> None:
                await bot.run(token)
                nursery.cancel_scope.cancel()

            nursery.start_soon(event_loop)
    finally:
        bot.close()


if __name__ == "__main__":
    trio.run(main)
