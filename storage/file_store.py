"""File-based storage for the bot's YAML configuration.

Provides a YAMLFileStore class that reads a YAML mapping, seeding the file
with defaults on first use, and writes it back atomically.
"""
import logging
import os
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


class YAMLFileStore:
    """Reads and atomically writes one YAML file.

    Attributes:
        path: Path to the YAML file
    """
    def __init__(self, path: str) -> None:
        self.path = path

    def exists(self) -> bool:
        """Check if the YAML file exists."""
        return os.path.exists(self.path)

    def read(self) -> Any:
        """Read and parse the YAML file.

        Returns:
            Parsed YAML data, or an empty dict if the file is missing or empty

        Raises:
            yaml.YAMLError: If the file is not valid YAML
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return {}
        except yaml.YAMLError:
            logger.error("Failed to parse YAML file %s", self.path)
            raise
        return {} if data is None else data

    def read_or_seed(self, defaults: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Read the file as a mapping, writing ``defaults`` first if it is missing.

        Returns:
            The stored mapping, or None when the document is not a mapping

        Raises:
            yaml.YAMLError: If the file is not valid YAML
        """
        if not self.exists():
            logger.info("%s not found, writing defaults", self.path)
            self.write(defaults)
            return dict(defaults)

        data = self.read()
        if not isinstance(data, dict):
            logger.warning(
                "%s holds a %s, expected a mapping", self.path, type(data).__name__
            )
            return None
        return data

    def write(self, data: Dict[str, Any]) -> None:
        """Write data to the YAML file through a temporary file and rename.

        Args:
            data: Mapping to write as YAML
        """
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)
        os.replace(tmp_path, self.path)
