"""Per-category handler lookup.

Both matchers share the same scope rule: an entry scoped to the event's peer
is considered, an unscoped entry is considered, an entry scoped to any other
peer never is. Among matching entries the peer-scoped ones win, and ties are
broken by registration order.
"""
import logging
from typing import Any, Callable, Optional

from core.errors import RoutingError
from core.models import AttachmentType, CancellationToken, Event
from core.registry import CommandRegistry, Handler

logger = logging.getLogger(__name__)


def _select(
    registry: CommandRegistry,
    peer_id: Optional[int],
    predicate: Callable[[Any], bool],
) -> Optional[Handler]:
    unscoped: Optional[Handler] = None
    for spec, handler in registry.snapshot():
        if spec.scope is not None and spec.scope != peer_id:
            continue
        if not predicate(spec):
            continue
        if spec.scope is not None:
            return handler
        if unscoped is None:
            unscoped = handler
    return unscoped


def find_pattern_handler(
    registry: CommandRegistry, event: Event
) -> Optional[Handler]:
    """Pick the handler whose pattern matches the event text, if any."""
    if event.text is None:
        return None
    return _select(registry, event.peer_id, lambda spec: spec.matches(event.text))


def sticker_id_of(event: Event) -> int:
    """Return the id of the event's only sticker.

    Raises:
        RoutingError: If the event carries no sticker or more than one
    """
    stickers = event.attachments_of(AttachmentType.STICKER)
    if len(stickers) != 1:
        raise RoutingError(
            f"expected exactly one sticker attachment, found {len(stickers)}",
            event=event,
        )
    sticker_id = stickers[0].id
    if sticker_id is None:
        raise RoutingError("sticker attachment has no id", event=event)
    return sticker_id


def find_sticker_handler(
    registry: CommandRegistry, event: Event
) -> Optional[Handler]:
    """Pick the handler registered for the event's sticker id, if any."""
    sticker_id = sticker_id_of(event)
    return _select(registry, event.peer_id, lambda spec: spec.id == sticker_id)


async def dispatch_pattern(
    registry: CommandRegistry, client: Any, event: Event, token: CancellationToken
) -> None:
    """Run the matching text-like handler, or the category fallback."""
    handler = find_pattern_handler(registry, event)
    if handler is None:
        logger.debug("No %s handler matched, using fallback", registry.name)
        await registry.trigger_fallback(client, event, token)
        return
    await handler(client, event, token)


async def dispatch_sticker(
    registry: CommandRegistry, client: Any, event: Event, token: CancellationToken
) -> None:
    """Run the matching sticker handler, or the sticker fallback."""
    handler = find_sticker_handler(registry, event)
    if handler is None:
        logger.debug("No sticker handler matched, using fallback")
        await registry.trigger_fallback(client, event, token)
        return
    await handler(client, event, token)
