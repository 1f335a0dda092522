"""Summary: Entry store and raw-log journal.

Importance: Keeps structured records and verbatim utterances in insertion order.
Alternatives: Query a relational table per category.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Iterable

from lifeos.models import Entry, RawLog, entry_from_dict, entry_to_dict, raw_log_from_dict, raw_log_to_dict
from lifeos.storage.sqlite_store import ENTRIES_KEY, RAW_LOGS_KEY, SqliteStore


logger = logging.getLogger(__name__)


def new_record_id() -> str:
    return uuid.uuid4().hex[:9]


class EntryStore:
    """Summary: Keyed collection of entries with insert, patch, and delete.

    Importance: The whole collection is persisted after each mutation.
    Alternatives: Persist one entry at a time.
    """

    def __init__(self, entries: Iterable[Entry] = (), store: SqliteStore | None = None) -> None:
        self._entries: dict[str, Entry] = {entry.id: entry for entry in entries}
        self._store = store

    @classmethod
    def load(cls, store: SqliteStore) -> "EntryStore":
        raw = store.load(ENTRIES_KEY, [])
        return cls((entry_from_dict(item) for item in raw), store=store)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def all(self) -> list[Entry]:
        return list(self._entries.values())

    def get(self, entry_id: str) -> Entry | None:
        return self._entries.get(entry_id)

    def insert(self, entry: Entry) -> Entry:
        self.insert_many([entry])
        return entry

    def insert_many(self, entries: list[Entry]) -> list[str]:
        """Summary: Insert a batch of entries as one logical write.

        Importance: Observers never see half of an extraction batch.
        Alternatives: Insert and persist entries one by one.
        """

        if not entries:
            return []
        updated = dict(self._entries)
        for entry in entries:
            updated[entry.id] = entry
        self._entries = updated
        self._save()
        return [entry.id for entry in entries]

    def patch_by_id(self, entry: Entry) -> bool:
        """Summary: Replace one record with a caller-merged version.

        Importance: Edits are free-form against whatever schema is current.
        Alternatives: Merge partial detail patches inside the store.
        """

        if entry.id not in self._entries:
            return False
        self._entries = {**self._entries, entry.id: entry}
        self._save()
        return True

    def delete_by_id(self, entry_id: str) -> bool:
        return self.delete_by_ids([entry_id]) == 1

    def delete_by_ids(self, entry_ids: Iterable[str]) -> int:
        """Summary: Delete every listed entry that exists.

        Importance: Backs undo, which removes all entries a message produced.
        Alternatives: Require callers to delete entries individually.
        """

        targets = set(entry_ids) & set(self._entries)
        if not targets:
            return 0
        self._entries = {key: entry for key, entry in self._entries.items() if key not in targets}
        self._save()
        logger.info("Deleted %s entries.", len(targets))
        return len(targets)

    def _save(self) -> None:
        if self._store:
            self._store.save(ENTRIES_KEY, [entry_to_dict(entry) for entry in self._entries.values()])


class RawLogJournal:
    """Summary: Append-only capture of every user utterance.

    Importance: Preserves what the user said even when extraction produced nothing.
    Alternatives: Reconstruct history from the chat log.
    """

    def __init__(self, logs: Iterable[RawLog] = (), store: SqliteStore | None = None) -> None:
        self._logs: list[RawLog] = list(logs)
        self._store = store

    @classmethod
    def load(cls, store: SqliteStore) -> "RawLogJournal":
        """Summary: Load the journal, assigning ids to legacy lines without one.

        Importance: Lines saved before ids existed stay editable and deletable.
        Alternatives: Drop lines that lack an id.
        """

        raw = store.load(RAW_LOGS_KEY, [])
        migrated = [item if item.get("id") else {**item, "id": new_record_id()} for item in raw]
        journal = cls((raw_log_from_dict(item) for item in migrated), store=store)
        if migrated != raw:
            journal._save()
        return journal

    def all(self) -> list[RawLog]:
        return list(self._logs)

    def append(self, text: str, timestamp: datetime) -> RawLog:
        log = RawLog(id=new_record_id(), timestamp=timestamp, text=text)
        self._logs = [*self._logs, log]
        self._save()
        return log

    def edit(self, log_id: str, text: str) -> bool:
        if not any(log.id == log_id for log in self._logs):
            return False
        self._logs = [
            RawLog(id=log.id, timestamp=log.timestamp, text=text) if log.id == log_id else log
            for log in self._logs
        ]
        self._save()
        return True

    def delete(self, log_id: str) -> bool:
        remaining = [log for log in self._logs if log.id != log_id]
        if len(remaining) == len(self._logs):
            return False
        self._logs = remaining
        self._save()
        return True

    def _save(self) -> None:
        if self._store:
            self._store.save(RAW_LOGS_KEY, [raw_log_to_dict(log) for log in self._logs])
