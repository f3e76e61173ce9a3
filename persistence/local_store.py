"""SQLite-backed key/value store used as the local fallback cache."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from planbook.core.models import Snapshot

LOGGER = logging.getLogger("planbook.local_store")

DATA_KEY = "teacherDashboardData"
LANGUAGE_KEY = "preferredLanguage"


class LocalStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        """Create a connection, ensuring the parent directory exists."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.db_path)

    def _ensure_schema(self) -> None:
        schema_sql = Path(__file__).with_name("schema.sql").read_text(encoding="utf-8")
        with self._connect() as con:
            con.executescript(schema_sql)

    def get_item(self, key: str) -> str | None:
        with self._connect() as con:
            row = con.execute("SELECT value FROM items WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with self._connect() as con:
            con.execute(
                "INSERT INTO items(key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP",
                (key, value),
            )
            con.commit()

    def remove_item(self, key: str) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM items WHERE key = ?", (key,))
            con.commit()

    def clear(self) -> None:
        with self._connect() as con:
            con.execute("DELETE FROM items")
            con.commit()

    def keys(self) -> list[str]:
        with self._connect() as con:
            return [row[0] for row in con.execute("SELECT key FROM items ORDER BY key")]


class LocalCache:
    """Typed view over a LocalStore: the snapshot copy and the UI language preference."""

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def save_snapshot(self, snapshot: Snapshot) -> None:
        self.store.set_item(DATA_KEY, json.dumps(snapshot.to_backup(), ensure_ascii=False))

    def load_snapshot(self) -> Snapshot | None:
        """Return the cached snapshot, or None when absent or unreadable."""
        raw = self.store.get_item(DATA_KEY)
        if raw is None:
            return None
        try:
            return Snapshot.from_backup(json.loads(raw))
        except ValueError as exc:
            LOGGER.warning("Ignoring unreadable local cache: %s", exc)
            return None

    def has_snapshot(self) -> bool:
        return self.store.get_item(DATA_KEY) is not None

    def clear_snapshot(self) -> None:
        self.store.remove_item(DATA_KEY)

    def preferred_language(self) -> str | None:
        return self.store.get_item(LANGUAGE_KEY)

    def set_preferred_language(self, lang: str) -> None:
        self.store.set_item(LANGUAGE_KEY, lang)
