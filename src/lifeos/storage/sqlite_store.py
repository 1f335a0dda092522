"""Summary: SQLite storage implementation for LifeOS.

Importance: Provides a local-first key-value persistence layer for every collection.
Alternatives: Use browser-style JSON files or an ORM with one table per entity.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator


ENTRIES_KEY = "entries"
MESSAGES_KEY = "messages"
RAW_LOGS_KEY = "raw_logs"
AI_SETTINGS_KEY = "ai_settings"
CHAT_SETTINGS_KEY = "chat_settings"
SCHEMAS_KEY = "schemas"
GROUPS_KEY = "groups"
CATEGORY_META_KEY = "category_meta"


@dataclass(frozen=True)
class StoredAiCall:
    """Summary: Audit record of one AI call.

    Importance: Provides visibility into prompts, outcomes, and latency.
    Alternatives: Log requests only in observability logs.
    """

    id: int
    purpose: str
    provider: str
    model: str
    prompt: str
    response_text: str
    status: str
    latency_ms: int
    timestamp: str


class SqliteStore:
    """Summary: SQLite-backed key-value storage for LifeOS.

    Importance: Each logical collection is written back in full on every change.
    Alternatives: Use incremental row-level writes per entity.
    """

    def __init__(self, db_path: str) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready before the first load.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS collections (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_calls (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    purpose TEXT NOT NULL,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    response_text TEXT NOT NULL,
                    status TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            connection.commit()

    def load(self, key: str, default: Any = None) -> Any:
        """Summary: Load one collection as decoded JSON.

        Importance: Absent collections fall back to the caller's default value.
        Alternatives: Raise when a collection has never been saved.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT value FROM collections WHERE key = ?", (key,))
            row = cursor.fetchone()
        if not row:
            return default
        return json.loads(row[0])

    def save(self, key: str, value: Any) -> None:
        """Summary: Replace one collection with a new JSON value.

        Importance: Full rewrites keep every collection internally consistent.
        Alternatives: Apply partial patches to stored documents.
        """

        payload = json.dumps(value, ensure_ascii=False)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO collections (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, payload, datetime.now().isoformat()),
            )
            connection.commit()

    def delete(self, key: str) -> bool:
        """Summary: Remove a collection so it reloads as its default.

        Importance: Supports resetting one area such as the taxonomy.
        Alternatives: Save the default value explicitly.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("DELETE FROM collections WHERE key = ?", (key,))
            deleted = cursor.rowcount > 0
            connection.commit()
        return deleted

    def keys(self) -> list[str]:
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("SELECT key FROM collections ORDER BY key")
            return [row[0] for row in cursor.fetchall()]

    def log_ai_call(
        self,
        purpose: str,
        provider: str,
        model: str,
        prompt: str,
        response_text: str,
        status: str,
        latency_ms: int,
    ) -> int:
        """Summary: Persist an AI call for auditing.

        Importance: Tracks prompts, providers, and outcomes including cancellations.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_calls (
                    purpose, provider, model, prompt, response_text, status, latency_ms, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    purpose,
                    provider,
                    model,
                    prompt,
                    response_text,
                    status,
                    latency_ms,
                    datetime.now().isoformat(),
                ),
            )
            call_id = cursor.lastrowid
            connection.commit()
        return int(call_id)

    def list_ai_calls(self, limit: int = 20) -> list[StoredAiCall]:
        """Summary: Return the most recent AI calls.

        Importance: Supports auditing what was sent to the model.
        Alternatives: Inspect the database manually.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, purpose, provider, model, prompt, response_text, status, latency_ms, timestamp
                FROM ai_calls ORDER BY id DESC LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiCall(*row) for row in rows]

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
        finally:
            connection.close()
