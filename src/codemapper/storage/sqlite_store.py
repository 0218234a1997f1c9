"""SQLite-backed document storage for the mapping cache."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

_DOCUMENT_KEY = "codemapper"


class SqliteBackend:
    """Keeps the cache document in a single-row table.

    Same read-modify-write contract as JsonFileBackend; SQLite only makes
    each individual save atomic.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self.init_db()

    def init_db(self) -> None:
        """Create the documents table."""
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS documents (
                key TEXT PRIMARY KEY,
                body TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """
        )
        self._conn.commit()

    def load(self) -> dict:
        cur = self._conn.execute("SELECT body FROM documents WHERE key = ?", (_DOCUMENT_KEY,))
        row = cur.fetchone()
        if row is None:
            return {}
        try:
            data = json.loads(row["body"])
        except json.JSONDecodeError as e:
            logger.warning("Cache document in %s unreadable, starting empty: %s", self._db_path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, doc: dict) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._conn.execute(
            "INSERT OR REPLACE INTO documents (key, body, updated_at) VALUES (?, ?, ?)",
            (_DOCUMENT_KEY, json.dumps(doc), now),
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
