"""Document backends for the mapping cache.

The cache is one JSON-shaped document read, modified, and written back whole.
There is no cross-process locking: concurrent writers race and the last
write wins. Deployments are assumed to be single-process.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class DocumentBackend(Protocol):
    """Load and save the whole cache document."""

    def load(self) -> dict:
        """Return the stored document, or {} if none exists or it is unreadable."""
        ...

    def save(self, doc: dict) -> None:
        """Replace the stored document."""
        ...


class JsonFileBackend:
    """Stores the document as a JSON file on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Cache document %s unreadable, starting empty: %s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, doc: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(doc, indent=2), encoding="utf-8")
