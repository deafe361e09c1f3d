"""Maps an inbound event to exactly one category."""
from core.errors import RoutingError
from core.models import ATTACHMENT_ORDER, ActionType, AttachmentType, Category, Event


_ACTION_CATEGORIES = {
    ActionType.CHAT_CREATE: Category.CHAT_CREATE,
    ActionType.CHAT_INVITE_USER: Category.CHAT_INVITE_USER,
    ActionType.CHAT_KICK_USER: Category.CHAT_KICK_USER,
    ActionType.CHAT_PHOTO_UPDATE: Category.CHAT_PHOTO_UPDATE,
    ActionType.CHAT_PHOTO_REMOVE: Category.CHAT_PHOTO_REMOVE,
    ActionType.CHAT_PIN_MESSAGE: Category.CHAT_PIN_MESSAGE,
    ActionType.CHAT_UNPIN_MESSAGE: Category.CHAT_UNPIN_MESSAGE,
    ActionType.CHAT_TITLE_UPDATE: Category.CHAT_TITLE_UPDATE,
    ActionType.CHAT_INVITE_USER_BY_LINK: Category.CHAT_INVITE_USER_BY_LINK,
}

_ATTACHMENT_CATEGORIES = {
    AttachmentType.STICKER: Category.STICKER,
    AttachmentType.PHOTO: Category.PHOTO,
    AttachmentType.VOICE: Category.VOICE,
    AttachmentType.VIDEO: Category.VIDEO,
    AttachmentType.AUDIO: Category.AUDIO,
    AttachmentType.DOCUMENT: Category.DOCUMENT,
    AttachmentType.POLL: Category.POLL,
}


def classify(event: Event) -> Category:
    """Classify an event; the first rule that applies wins.

    Order: chat action, forwarded messages, reply, attachments (sticker,
    photo, voice, video, audio, document, poll), plain message. Events
    without text are still plain messages.

    Raises:
        RoutingError: If the event carries an unknown chat action
    """
    if event.action is not None:
        try:
            return _ACTION_CATEGORIES[ActionType(event.action.type)]
        except ValueError:
            raise RoutingError(
                f"unknown chat action {event.action.type!r}", event=event
            ) from None

    if event.forwarded:
        return Category.FORWARD

    if event.reply_to is not None:
        return Category.REPLY

    present = {a.type for a in event.attachments}
    for kind in ATTACHMENT_ORDER:
        if kind in present:
            return _ATTACHMENT_CATEGORIES[kind]

    return Category.MESSAGE
