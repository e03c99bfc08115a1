"""SQLiteHistoryStore: local file-based history.

Why SQLite as the default store:
- Batteries included: ships with Python, no extra dependencies.
- Fast random access: indexed queries on repository/entity are
  microseconds, so listing on every client refresh stays cheap.
- Transactions make chain sequencing atomic: the previous entry is read
  and the new one inserted in one transaction under the store lock.

Schema:
  history — one row per persisted outcome; the full outcome payload is kept
            as JSON next to the summary columns used for listing.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from datetime import datetime, timezone

from chorus_store.base import BaseHistoryStore, summarize_outcome
from chorus_store.models import HistoryEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 500

_SCHEMA = """
CREATE TABLE IF NOT EXISTS history (
    row_id              INTEGER PRIMARY KEY AUTOINCREMENT,
    id                  TEXT NOT NULL UNIQUE,
    repository_full_name TEXT NOT NULL,
    entity_kind         TEXT NOT NULL,
    entity_number       INTEGER NOT NULL,
    persisted_at        TEXT NOT NULL,
    chain_seq           INTEGER NOT NULL DEFAULT 1,
    previous_entry_id   TEXT,
    title               TEXT,
    verdict             TEXT,
    score               REAL,
    head_sha            TEXT,
    outcome_json        TEXT DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_history_repo   ON history (repository_full_name);
CREATE INDEX IF NOT EXISTS idx_history_entity ON history (repository_full_name, entity_number);
"""


class SQLiteHistoryStore(BaseHistoryStore):
    """Stores history in a local SQLite database file.

    The database file path defaults to `.chorus.db` in the current working
    directory. Configure via .chorus.yml: `store_path: /path/to/chorus.db`.
    At most ``max_entries`` rows are kept; the oldest are evicted first.
    """

    def __init__(self, db_path: str = ".chorus.db", max_entries: int = DEFAULT_MAX_ENTRIES):
        self._max_entries = max_entries
        self._lock = threading.Lock()
        # Shared across the worker pool; every access goes through self._lock.
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def record(
        self,
        outcome: dict,
        repository_full_name: str,
        entity_number: int,
        previous_entry_id: str | None = None,
        entity_kind: str = "pr",
        persisted_at: str | None = None,
    ) -> HistoryEntry:
        summary = summarize_outcome(outcome)
        entry_id = str(uuid.uuid4())
        persisted_at = persisted_at or datetime.now(timezone.utc).isoformat()

        with self._lock, self._conn:
            sequence = 1
            linked_id = None
            if previous_entry_id:
                row = self._conn.execute(
                    "SELECT chain_seq FROM history WHERE id=? AND repository_full_name=?",
                    (previous_entry_id, repository_full_name),
                ).fetchone()
                if row is not None:
                    sequence = row["chain_seq"] + 1
                    linked_id = previous_entry_id
                else:
                    logger.debug("Previous entry %s not found in %s; starting a new chain", previous_entry_id, repository_full_name)

            self._conn.execute(
                """
                INSERT INTO history
                  (id, repository_full_name, entity_kind, entity_number, persisted_at,
                   chain_seq, previous_entry_id, title, verdict, score, head_sha, outcome_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry_id,
                    repository_full_name,
                    entity_kind,
                    entity_number,
                    persisted_at,
                    sequence,
                    linked_id,
                    summary["title"],
                    summary["verdict"],
                    summary["score"],
                    summary["head_sha"],
                    json.dumps(outcome),
                ),
            )
            evicted = self._evict_overflow()

        if evicted:
            logger.debug("History capped at %d entries (%d evicted)", self._max_entries, evicted)
        logger.info(
            "Recorded %s #%d (%s) as %s, sequence %d", entity_kind, entity_number, repository_full_name, entry_id, sequence
        )
        return HistoryEntry(
            id=entry_id,
            repository_full_name=repository_full_name,
            entity_kind=entity_kind,
            entity_number=entity_number,
            persisted_at=persisted_at,
            sequence=sequence,
            previous_entry_id=linked_id,
            title=summary["title"],
            verdict=summary["verdict"],
            score=summary["score"],
            head_sha=summary["head_sha"],
            outcome=outcome,
        )

    def list(
        self,
        repository_full_name: str,
        limit: int | None = None,
        entity_number: int | None = None,
        entity_kind: str | None = None,
    ) -> list[HistoryEntry]:
        query = "SELECT * FROM history WHERE repository_full_name=?"
        args: list = [repository_full_name]
        if entity_number is not None:
            query += " AND entity_number=?"
            args.append(entity_number)
        if entity_kind is not None:
            query += " AND entity_kind=?"
            args.append(entity_kind)
        query += " ORDER BY persisted_at DESC, row_id DESC"
        if limit is not None and limit > 0:
            query += " LIMIT ?"
            args.append(limit)

        with self._lock:
            rows = self._conn.execute(query, args).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def get(self, entry_id: str) -> HistoryEntry | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM history WHERE id=?", (entry_id,)).fetchone()
        return self._row_to_entry(row) if row is not None else None

    def delete(self, entry_id: str) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM history WHERE id=?", (entry_id,))
        if cursor.rowcount == 0:
            logger.debug("History entry not found: %s", entry_id)
            return False
        logger.info("Deleted history entry: %s", entry_id)
        return True

    def clear(self, repository_full_name: str | None = None) -> None:
        with self._lock, self._conn:
            if repository_full_name:
                self._conn.execute("DELETE FROM history WHERE repository_full_name=?", (repository_full_name,))
            else:
                self._conn.execute("DELETE FROM history")
        logger.info("Cleared history for %s", repository_full_name or "all repositories")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _evict_overflow(self) -> int:
        if self._max_entries <= 0:
            return 0
        cursor = self._conn.execute(
            """
            DELETE FROM history WHERE row_id IN (
                SELECT row_id FROM history ORDER BY persisted_at DESC, row_id DESC LIMIT -1 OFFSET ?
            )
            """,
            (self._max_entries,),
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            id=row["id"],
            repository_full_name=row["repository_full_name"],
            entity_kind=row["entity_kind"],
            entity_number=row["entity_number"],
            persisted_at=row["persisted_at"],
            sequence=row["chain_seq"],
            previous_entry_id=row["previous_entry_id"],
            title=row["title"] or "",
            verdict=row["verdict"] or "",
            score=row["score"],
            head_sha=row["head_sha"],
            outcome=json.loads(row["outcome_json"] or "{}"),
        )
