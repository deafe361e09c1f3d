"""Handlers that reply with fixed text.

These cover the common "when X, say Y" case without writing a handler.
"""
import random
from typing import Any, Sequence

from core.errors import ValidationError
from core.models import CancellationToken, Event
from core.registry import Handler


def _check_answer(text: Any) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("answer cannot be empty or whitespace")


def answer(text: str) -> Handler:
    """Return a handler that replies to the event's peer with text."""
    _check_answer(text)

    async def _answer(client: Any, event: Event, token: CancellationToken) -> None:
        await client.send_message(event.peer_id, text)

    return _answer


def random_answer(texts: Sequence[str]) -> Handler:
    """Return a handler that replies with one of texts, picked at random."""
    if texts is None or isinstance(texts, str) or not list(texts):
        raise ValidationError("answers must be a non-empty list of strings")
    choices = list(texts)
    for text in choices:
        _check_answer(text)

    async def _random_answer(
        client: Any, event: Event, token: CancellationToken
    ) -> None:
        await client.send_message(event.peer_id, random.choice(choices))

    return _random_answer
