"""Canned answers declared in the config file.

Each entry of the ``answers`` section registers a handler replying with a
fixed text (``answer``) or a random pick from a list (``answers``) when a
message matches ``pattern``::

    answers:
      - pattern: "^ping$"
        flags: [IGNORECASE]
        answer: pong
      - pattern: "^hello"
        peer_id: 2000000001
        on: reply
        answers: [hi, hey]
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import ConfigManager
from core.answers import answer, random_answer
from core.bot import CommandBot
from core.errors import ValidationError
from core.models import Category, pattern_match
from core.registry import Handler

logger = logging.getLogger(__name__)


_CATEGORIES = {
    "text": Category.MESSAGE,
    "reply": Category.REPLY,
    "forward": Category.FORWARD,
}


def parse_flags(names: Optional[List[str]]) -> int:
    """Turn flag names such as ``IGNORECASE`` into ``re`` flags."""
    flags = 0
    for name in names or []:
        try:
            flags |= re.RegexFlag[str(name).upper()]
        except KeyError:
            raise ValidationError(f"unknown regex flag {name!r}") from None
    return flags


@dataclass
class AnswerRule:
    pattern: str
    answers: List[str]
    flags: List[str] = field(default_factory=list)
    peer_id: Optional[int] = None
    on: str = "text"

    def handler(self) -> Handler:
        if len(self.answers) == 1:
            return answer(self.answers[0])
        return random_answer(self.answers)


class AutoAnswersFeature:
    """
    Registers the canned answers from the config file on a bot.
    """

    def __init__(self, bot: CommandBot, config_mgr: ConfigManager) -> None:
        self.bot = bot
        self.config_mgr = config_mgr

    def _load_rules(self) -> List[AnswerRule]:
        rules_conf: List[Dict[str, Any]] = self.config_mgr.get().get("answers") or []
        rules: List[AnswerRule] = []
        for r in rules_conf:
            try:
                texts = r["answers"] if "answers" in r else [r["answer"]]
                rules.append(
                    AnswerRule(
                        pattern=r["pattern"],
                        answers=list(texts),
                        flags=r.get("flags") or [],
                        peer_id=r.get("peer_id"),
                        on=r.get("on", "text"),
                    )
                )
            except (KeyError, TypeError):
                logger.warning("Invalid answer rule in config: %s", r)
        return rules

    def register(self) -> int:
        """Register every rule; returns how many were newly stored.

        Raises:
            ValidationError: If a rule has a bad pattern, flag, peer or answer
        """
        stored = 0
        for rule in self._load_rules():
            category = _CATEGORIES.get(rule.on)
            if category is None:
                raise ValidationError(f"answer rules cannot target {rule.on!r}")
            spec = pattern_match(rule.pattern, parse_flags(rule.flags), scope=rule.peer_id)
            if self.bot.dispatcher.registry(category).store(spec, rule.handler()):
                stored += 1
        logger.info("Registered %d canned answers", stored)
        return stored
