"""Data models for inbound chat events and handler registration.

Defines the Event dataclass with its attachments and actions, the match
specifications handlers are registered under, the poll cursor and the run
configuration consumed by the polling loop.
"""
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

import trio

from core.errors import ValidationError


class AttachmentType(str, Enum):
    """Attachment kinds, in the order the classifier scans them."""

    STICKER = "sticker"
    PHOTO = "photo"
    VOICE = "audio_message"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "doc"
    POLL = "poll"


ATTACHMENT_ORDER: Tuple[AttachmentType, ...] = tuple(AttachmentType)


class ActionType(str, Enum):
    """Chat-membership changes carried by service messages."""

    CHAT_CREATE = "chat_create"
    CHAT_INVITE_USER = "chat_invite_user"
    CHAT_KICK_USER = "chat_kick_user"
    CHAT_PHOTO_UPDATE = "chat_photo_update"
    CHAT_PHOTO_REMOVE = "chat_photo_remove"
    CHAT_PIN_MESSAGE = "chat_pin_message"
    CHAT_UNPIN_MESSAGE = "chat_unpin_message"
    CHAT_TITLE_UPDATE = "chat_title_update"
    CHAT_INVITE_USER_BY_LINK = "chat_invite_user_by_link"


class Category(Enum):
    """Mutually exclusive event classifications."""

    MESSAGE = "message"
    REPLY = "reply"
    FORWARD = "forward"
    STICKER = "sticker"
    PHOTO = "photo"
    VOICE = "voice"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    POLL = "poll"
    CHAT_CREATE = "chat_create"
    CHAT_INVITE_USER = "chat_invite_user"
    CHAT_KICK_USER = "chat_kick_user"
    CHAT_PHOTO_UPDATE = "chat_photo_update"
    CHAT_PHOTO_REMOVE = "chat_photo_remove"
    CHAT_PIN_MESSAGE = "chat_pin_message"
    CHAT_UNPIN_MESSAGE = "chat_unpin_message"
    CHAT_TITLE_UPDATE = "chat_title_update"
    CHAT_INVITE_USER_BY_LINK = "chat_invite_user_by_link"


@dataclass(frozen=True)
class Attachment:
    """A typed attachment of an inbound message.

    Attributes:
        type: Kind of the attachment
        id: Identifier of the attached object (sticker id for stickers)
        raw: Original attachment payload
    """
    type: AttachmentType
    id: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ChatAction:
    """A chat-membership change attached to a service message.

    Attributes:
        type: Raw action kind as reported by the platform
        member_id: User the action refers to, if any
        text: New chat title or similar free text, if any
    """
    type: str
    member_id: Optional[int] = None
    text: Optional[str] = None


@dataclass
class Event:  # pylint: disable=too-many-instance-attributes
    """Represents a parsed inbound chat message.

    Attributes:
        peer_id: Conversation the message belongs to
        sender_id: User who sent the message
        text: Message text, if any
        attachments: Typed attachments in platform order
        forwarded: Messages forwarded along with this one
        reply_to: Message this one replies to
        action: Chat-membership change for service messages
        message_id: Platform message id
        raw: Original payload
    """
    peer_id: Optional[int]
    sender_id: Optional[int]
    text: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    forwarded: List["Event"] = field(default_factory=list)
    reply_to: Optional["Event"] = None
    action: Optional[ChatAction] = None
    message_id: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def attachments_of(self, kind: AttachmentType) -> List[Attachment]:
        """Return the attachments of the given kind, in platform order."""
        return [a for a in self.attachments if a.type == kind]


# Match specifications

ALLOWED_FLAGS = (
    re.IGNORECASE | re.MULTILINE | re.DOTALL | re.VERBOSE | re.ASCII | re.UNICODE
)


def _is_positive_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _check_scope(scope: Optional[int]) -> None:
    if scope is not None and not _is_positive_id(scope):
        raise ValidationError(f"scope must be a positive peer id, got {scope!r}")


@dataclass(frozen=True)
class PatternMatch:
    """Regex key for text, reply and forward handlers.

    Attributes:
        scope: Peer the entry is limited to, or None for every peer
        pattern: Regular expression searched for in the message text
        flags: ``re`` flags used when compiling the pattern
    """
    scope: Optional[int]
    pattern: str
    flags: re.RegexFlag = re.RegexFlag(0)

    def __post_init__(self) -> None:
        _check_scope(self.scope)
        if not isinstance(self.pattern, str) or not self.pattern.strip():
            raise ValidationError("pattern cannot be empty or whitespace")
        if isinstance(self.flags, bool) or not isinstance(self.flags, int):
            raise ValidationError(f"flags must be re flags, got {self.flags!r}")
        if self.flags & ~ALLOWED_FLAGS:
            raise ValidationError(f"unsupported regex flags: {self.flags!r}")
        object.__setattr__(self, "flags", re.RegexFlag(self.flags))
        try:
            re.compile(self.pattern, self.flags)
        except (re.error, ValueError) as e:
            raise ValidationError(f"invalid pattern {self.pattern!r}: {e}") from e

    def matches(self, text: Optional[str]) -> bool:
        if text is None:
            return False
        return re.search(self.pattern, text, self.flags) is not None


@dataclass(frozen=True)
class IdentityMatch:
    """Exact-id key for sticker handlers.

    Attributes:
        scope: Peer the entry is limited to, or None for every peer
        id: Sticker id to compare against
    """
    scope: Optional[int]
    id: int

    def __post_init__(self) -> None:
        _check_scope(self.scope)
        if not _is_positive_id(self.id):
            raise ValidationError(f"id must be a positive integer, got {self.id!r}")


MatchSpec = Union[PatternMatch, IdentityMatch]


def pattern_match(
    pattern: str, flags: int = 0, scope: Optional[int] = None
) -> PatternMatch:
    """Build a regex match specification."""
    return PatternMatch(scope=scope, pattern=pattern, flags=flags)


def sticker_match(sticker_id: int, scope: Optional[int] = None) -> IdentityMatch:
    """Build a sticker-id match specification."""
    return IdentityMatch(scope=scope, id=sticker_id)


# Polling

@dataclass(frozen=True)
class PollCursor:
    """Position in the platform's event stream.

    Attributes:
        ts: Windowing marker returned by the session-start call
        pts: Event sequence marker, advanced after every batch
    """
    ts: str
    pts: Optional[int] = None

    def advance(self, new_pts: Optional[int]) -> "PollCursor":
        if new_pts is None:
            return self
        return replace(self, pts=new_pts)


@dataclass(frozen=True)
class Batch:
    """Events returned by one fetch, plus the cursor's next pts."""
    events: Tuple[Event, ...] = ()
    new_pts: Optional[int] = None


class ProfileField(str, Enum):
    """Extra sender profile fields the platform may attach to a batch."""

    PHOTO = "photo"
    SCREEN_NAME = "screen_name"
    ONLINE = "online"
    SEX = "sex"
    DOMAIN = "domain"
    LAST_SEEN = "last_seen"


class MessageTypeFilter(str, Enum):
    """Limits a batch to direct or group conversations."""

    DIRECT = "direct"
    GROUP = "group"


def _optional_positive(name: str, value: Any) -> None:
    if value is not None and not _is_positive_id(value):
        raise ValidationError(f"{name} must be a positive integer, got {value!r}")


@dataclass(frozen=True)
class RunConfiguration:  # pylint: disable=too-many-instance-attributes
    """Options passed to the transport on every poll cycle.

    Attributes:
        need_extended_cursor: Ask the session-start call for a pts marker
        protocol_version: Long-poll protocol version
        fields: Extra profile fields to return
        preview_length: Truncate message text to this many characters (0 = off)
        online_only: Only return history from users currently online
        events_limit: Error out when the history holds more events
        messages_limit: Number of messages to return per batch
        max_message_id: Highest message id already known locally
        message_type_filter: Only return direct or group messages
    """
    need_extended_cursor: bool = True
    protocol_version: int = 3
    fields: FrozenSet[ProfileField] = frozenset()
    preview_length: Optional[int] = None
    online_only: Optional[bool] = None
    events_limit: Optional[int] = None
    messages_limit: Optional[int] = 200
    max_message_id: Optional[int] = None
    message_type_filter: Optional[MessageTypeFilter] = None

    def __post_init__(self) -> None:
        if (
            isinstance(self.protocol_version, bool)
            or not isinstance(self.protocol_version, int)
            or self.protocol_version < 0
        ):
            raise ValidationError(
                f"protocol_version must be a non-negative integer, got {self.protocol_version!r}"
            )
        if self.preview_length is not None and (
            not isinstance(self.preview_length, int) or self.preview_length < 0
        ):
            raise ValidationError(
                f"preview_length must be >= 0, got {self.preview_length!r}"
            )
        _optional_positive("events_limit", self.events_limit)
        _optional_positive("messages_limit", self.messages_limit)
        _optional_positive("max_message_id", self.max_message_id)
        try:
            object.__setattr__(
                self, "fields", frozenset(ProfileField(f) for f in self.fields)
            )
            if self.message_type_filter is not None:
                object.__setattr__(
                    self,
                    "message_type_filter",
                    MessageTypeFilter(self.message_type_filter),
                )
        except ValueError as e:
            raise ValidationError(str(e)) from e

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunConfiguration":
        """Build a configuration from a ``long_poll`` config section.

        Unknown keys are rejected so typos do not go unnoticed.
        """
        data = dict(data or {})
        known = set(cls.__dataclass_fields__)  # pylint: disable=no-member
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"unknown long_poll options: {', '.join(unknown)}")
        if "fields" in data:
            data["fields"] = frozenset(data["fields"] or ())
        return cls(**data)


class CancellationToken:
    """Cooperative stop signal shared by the router and handlers.

    Cancelling does not interrupt anything by itself; the router checks it
    before each fetch and each event, and handlers may check it too.
    """

    def __init__(self) -> None:
        self._event = trio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancel() is called."""
        await self._event.wait()
