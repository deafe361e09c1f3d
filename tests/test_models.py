import re

import pytest

from core.errors import ValidationError
from core.models import (
    CancellationToken,
    IdentityMatch,
    MessageTypeFilter,
    PatternMatch,
    PollCursor,
    ProfileField,
    RunConfiguration,
    pattern_match,
    sticker_match,
)


@pytest.mark.parametrize("pattern", ["", "   ", None])
def test_pattern_match_rejects_empty_pattern(pattern) -> None:
    with pytest.raises(ValidationError):
        PatternMatch(scope=None, pattern=pattern)


def test_pattern_match_rejects_invalid_regex() -> None:
    with pytest.raises(ValidationError):
        pattern_match("(unclosed")


@pytest.mark.parametrize("flags", [re.LOCALE, re.DEBUG, 1 << 20, True, "i"])
def test_pattern_match_rejects_unknown_flags(flags) -> None:
    with pytest.raises(ValidationError):
        pattern_match("^x$", flags)


def test_pattern_match_rejects_incompatible_flags() -> None:
    with pytest.raises(ValidationError):
        pattern_match("^x$", re.ASCII | re.UNICODE)


@pytest.mark.parametrize("scope", [0, -5, True, "100"])
def test_match_specs_reject_bad_scope(scope) -> None:
    with pytest.raises(ValidationError):
        pattern_match("^x$", scope=scope)
    with pytest.raises(ValidationError):
        sticker_match(1, scope=scope)


@pytest.mark.parametrize("sticker_id", [0, -1, False, None])
def test_identity_match_requires_positive_id(sticker_id) -> None:
    with pytest.raises(ValidationError):
        IdentityMatch(scope=None, id=sticker_id)


def test_pattern_match_flags_normalize_to_same_key() -> None:
    a = pattern_match("^hi", 2)
    b = pattern_match("^hi", re.IGNORECASE)
    assert a == b
    assert hash(a) == hash(b)
    assert a.flags == re.IGNORECASE


def test_pattern_match_searches_text() -> None:
    spec = pattern_match("ping", re.IGNORECASE)
    assert spec.matches("say PING now")
    assert not spec.matches("pong")
    assert not spec.matches(None)


def test_run_configuration_defaults() -> None:
    config = RunConfiguration()
    assert config.need_extended_cursor is True
    assert config.protocol_version == 3
    assert config.messages_limit == 200
    assert config.fields == frozenset()


def test_run_configuration_from_dict_converts_enums() -> None:
    config = RunConfiguration.from_dict(
        {
            "messages_limit": 50,
            "fields": ["photo", "online"],
            "message_type_filter": "direct",
            "preview_length": 0,
        }
    )
    assert config.messages_limit == 50
    assert config.fields == frozenset({ProfileField.PHOTO, ProfileField.ONLINE})
    assert config.message_type_filter is MessageTypeFilter.DIRECT
    assert config.preview_length == 0


@pytest.mark.parametrize(
    "data",
    [
        {"messages_limt": 10},
        {"messages_limit": 0},
        {"events_limit": -1},
        {"protocol_version": -1},
        {"preview_length": -3},
        {"fields": ["nope"]},
        {"message_type_filter": "channel"},
    ],
)
def test_run_configuration_rejects_bad_values(data) -> None:
    with pytest.raises(ValidationError):
        RunConfiguration.from_dict(data)


def test_poll_cursor_advance_only_moves_pts() -> None:
    cursor = PollCursor(ts="abc", pts=10)
    moved = cursor.advance(25)
    assert moved == PollCursor(ts="abc", pts=25)
    assert cursor.advance(None) is cursor


def test_cancellation_token() -> None:
    token = CancellationToken()
    assert not token.cancelled
    token.cancel()
    assert token.cancelled
