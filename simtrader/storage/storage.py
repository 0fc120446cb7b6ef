"""Record stores for session documents.

A store keeps JSON documents (session records, exports) under short string
keys. JsonFileStorage maps every key to one file in a data directory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class IStorageService(ABC):
    """Abstract store for JSON-compatible session records."""

    @abstractmethod
    def save(self, key: str, data: Any) -> None:
        """Store a record, replacing any previous one under the same key.

        Args:
            key: Record name, e.g. "session"
            data: JSON-compatible document
        """
        ...

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        """Read a record.

        Returns:
            The document, or None when there is no readable record
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a record; a missing record is not an error."""
        ...


class JsonFileStorage(IStorageService):
    """Records as ``<key>.json`` files in a data directory.

    A record is written to a temporary sibling first and then moved over the
    old file, so an interrupted save never leaves a half-written record.
    """

    def __init__(self, base_path: str | Path) -> None:
        self._root = Path(base_path).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        name = key.replace(os.sep, "_").replace("/", "_").replace("\\", "_")
        return self._root / f"{name}{RECORD_SUFFIX}"

    def save(self, key: str, data: Any) -> None:
        """Write a record.

        Raises:
            TypeError: The document holds values JSON cannot encode
            OSError: The data directory is not writable
        """
        target = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.stem}-", suffix=".tmp", dir=self._root)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as out:
                json.dump(data, out, indent=2, ensure_ascii=False)
            os.replace(tmp_name, target)
        except (TypeError, ValueError, OSError) as e:
            logger.error(f"Could not write record '{key}' to {target}: {e}")
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Record '{key}' written to {target}")

    def load(self, key: str) -> Optional[Any]:
        source = self.path_for(key)
        try:
            text = source.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Could not read record '{key}' from {source}: {e}")
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Record '{key}' is not valid JSON ({source}): {e}")
            return None

    def delete(self, key: str) -> None:
        target = self.path_for(key)
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Could not delete record '{key}' ({target}): {e}")
