"""Configuration management for the command router bot.

Provides a ConfigManager class that loads bot configuration from a YAML file,
writing sensible defaults when the file does not exist, and turns the
``long_poll`` section into a RunConfiguration.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from core.models import RunConfiguration
from storage.file_store import YAMLFileStore

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "long_poll": {
        "need_extended_cursor": True,
        "protocol_version": 3,
        "messages_limit": 200,
    },
    "router": {
        # seconds to wait after a failed poll before polling again
        "error_backoff_seconds": 5,
    },
    "answers": [
        {
            "pattern": "^ping$",
            "flags": ["IGNORECASE"],
            "answer": "pong",
        },
    ],
    "logging": {
        "level": "INFO",
    },
}


@dataclass
class ConfigManager:
    """Loads bot configuration from a YAML file.

    Attributes:
        path: Path to the YAML configuration file
    """
    path: str
    _store: YAMLFileStore = field(init=False)
    _config: Dict[str, Any] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self._store = YAMLFileStore(self.path)

    def load(self) -> Dict[str, Any]:
        """Load configuration from file, creating defaults if needed."""
        data = self._store.read_or_seed(DEFAULT_CONFIG)
        if data is None:
            logger.warning("Config file malformed, using defaults")
            self._config = DEFAULT_CONFIG.copy()
            return self._config

        # Merge defaults with existing config (shallow)
        merged = DEFAULT_CONFIG.copy()
        for k, v in data.items():
            merged[k] = v
        self._config = merged
        return self._config

    def get(self) -> Dict[str, Any]:
        """Get the current configuration dictionary."""
        return self._config

    def run_configuration(self) -> RunConfiguration:
        """Build the poll options from the ``long_poll`` section.

        Raises:
            ValidationError: If the section holds unknown keys or bad values
        """
        return RunConfiguration.from_dict(self._config.get("long_poll"))

    def error_backoff(self) -> float:
        """Seconds the polling loop waits after an error."""
        return float(self._config.get("router", {}).get("error_backoff_seconds", 0))
