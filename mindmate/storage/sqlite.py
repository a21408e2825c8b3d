"""SQLite record store for mindmate.

Single-node storage for journal records and the per-owner mood history.
Connections are opened per operation; every write is scoped by owner_id.
"""

import asyncio
import contextlib
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import StorageError
from ..types import (
    MOOD_HISTORY_CAP,
    JournalRecord,
    MoodHistory,
    MoodRecord,
    MoodState,
    format_timestamp,
    parse_datetime,
)
from .base import RecordStore
from .schema import SCHEMA, init_db

logger = logging.getLogger(__name__)

# Journal columns an update may touch
_UPDATABLE_JOURNAL_COLUMNS = ("cipher_content", "mood", "intensity", "tags")


class SQLiteRecordStore(RecordStore):
    """RecordStore backed by a SQLite file.

    Args:
        db_path: Path to the database file (created if missing).
        mood_history_cap: Capacity of each owner's MoodHistory.
    """

    def __init__(self, db_path: Union[str, Path], mood_history_cap: int = MOOD_HISTORY_CAP):
        if mood_history_cap < 1:
            raise ValueError("mood_history_cap must be at least 1")
        self.db_path = Path(db_path)
        self.mood_history_cap = mood_history_cap
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            init_db(conn, SCHEMA)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        Raises:
            StorageError: If SQLite fails to open, execute or commit.
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open record store at {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Record store operation failed, rolling back: {e}")
            conn.rollback()
            raise StorageError(f"Record store operation failed: {e}") from e
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    # === Row conversion ===

    def _row_to_journal(self, row: sqlite3.Row) -> JournalRecord:
        return JournalRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            cipher_content=row["cipher_content"],
            mood=MoodState(row["mood"]) if row["mood"] else None,
            intensity=row["intensity"],
            tags=json.loads(row["tags"]) if row["tags"] else [],
        )

    def _row_to_mood(self, row: sqlite3.Row) -> MoodRecord:
        return MoodRecord(
            owner_id=row["owner_id"],
            mood=MoodState(row["mood"]),
            intensity=row["intensity"],
            timestamp=parse_datetime(row["timestamp"]),
            note=row["note"],
        )

    def _column_value(self, column: str, value: Any) -> Any:
        if column == "tags":
            return json.dumps(list(value or []))
        if column == "mood" and value is not None:
            return MoodState(value).value
        return value

    # === Journals ===

    async def get_journal(self, owner_id: str, journal_id: str) -> Optional[JournalRecord]:
        def _query():
            with self._connect() as conn:
                return conn.execute(
                    "SELECT * FROM journals WHERE id = ? AND owner_id = ?",
                    (journal_id, owner_id),
                ).fetchone()

        row = await asyncio.to_thread(_query)
        return self._row_to_journal(row) if row else None

    async def find_journal_created_at(
        self, owner_id: str, created_at: datetime
    ) -> Optional[JournalRecord]:
        def _query():
            with self._connect() as conn:
                return conn.execute(
                    "SELECT * FROM journals WHERE owner_id = ? AND created_at = ? LIMIT 1",
                    (owner_id, format_timestamp(created_at)),
                ).fetchone()

        row = await asyncio.to_thread(_query)
        return self._row_to_journal(row) if row else None

    async def insert_journal(self, record: JournalRecord) -> None:
        params = (
            record.id,
            record.owner_id,
            format_timestamp(record.created_at),
            format_timestamp(record.updated_at),
            record.cipher_content,
            self._column_value("mood", record.mood),
            record.intensity,
            self._column_value("tags", record.tags),
        )

        def _insert():
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO journals
                       (id, owner_id, created_at, updated_at, cipher_content, mood, intensity, tags)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    params,
                )

        await asyncio.to_thread(_insert)

    async def update_journal(
        self,
        owner_id: str,
        journal_id: str,
        changes: Dict[str, Any],
        updated_at: datetime,
        expected_updated_at: Optional[datetime] = None,
    ) -> bool:
        unknown = set(changes) - set(_UPDATABLE_JOURNAL_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update journal fields: {sorted(unknown)}")

        columns = [c for c in _UPDATABLE_JOURNAL_COLUMNS if c in changes]
        assignments = [f"{c} = ?" for c in columns] + ["updated_at = ?"]
        params: List[Any] = [self._column_value(c, changes[c]) for c in columns]
        params.append(format_timestamp(updated_at))

        where = "id = ? AND owner_id = ?"
        params.extend([journal_id, owner_id])
        if expected_updated_at is not None:
            where += " AND updated_at = ?"
            params.append(format_timestamp(expected_updated_at))

        def _update():
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE journals SET {', '.join(assignments)} WHERE {where}", params
                )
                return cursor.rowcount

        return await asyncio.to_thread(_update) > 0

    async def delete_journal(self, owner_id: str, journal_id: str) -> bool:
        def _delete():
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM journals WHERE id = ? AND owner_id = ?", (journal_id, owner_id)
                )
                return cursor.rowcount

        return await asyncio.to_thread(_delete) > 0

    async def list_journals(self, owner_id: str, limit: int = 100) -> List[JournalRecord]:
        def _query():
            with self._connect() as conn:
                return conn.execute(
                    """SELECT * FROM journals WHERE owner_id = ?
                       ORDER BY created_at DESC LIMIT ?""",
                    (owner_id, limit),
                ).fetchall()

        rows = await asyncio.to_thread(_query)
        return [self._row_to_journal(row) for row in rows]

    # === Moods ===

    async def has_mood_at(self, owner_id: str, timestamp: datetime) -> bool:
        def _query():
            with self._connect() as conn:
                return conn.execute(
                    "SELECT 1 FROM moods WHERE owner_id = ? AND timestamp = ? LIMIT 1",
                    (owner_id, format_timestamp(timestamp)),
                ).fetchone()

        return await asyncio.to_thread(_query) is not None

    async def append_mood(self, mood: MoodRecord) -> List[MoodRecord]:
        """Append through the owner's MoodHistory so the cap is enforced in one transaction."""
        return await asyncio.to_thread(self._append_mood_sync, mood)

    def _append_mood_sync(self, mood: MoodRecord) -> List[MoodRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM moods WHERE owner_id = ? ORDER BY timestamp, seq",
                (mood.owner_id,),
            ).fetchall()

            seq_by_entry: Dict[int, int] = {}
            entries = []
            for row in rows:
                record = self._row_to_mood(row)
                seq_by_entry[id(record)] = row["seq"]
                entries.append(record)

            history = MoodHistory(self.mood_history_cap, entries)
            trimmed = history.append(mood)

            if not any(m is mood for m in trimmed):
                conn.execute(
                    """INSERT INTO moods (owner_id, timestamp, mood, intensity, note)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        mood.owner_id,
                        format_timestamp(mood.timestamp),
                        MoodState(mood.mood).value,
                        mood.intensity,
                        mood.note,
                    ),
                )

            stale = [seq_by_entry[id(m)] for m in trimmed if id(m) in seq_by_entry]
            if stale:
                placeholders = ",".join("?" * len(stale))
                conn.execute(f"DELETE FROM moods WHERE seq IN ({placeholders})", stale)
                logger.debug(f"Trimmed {len(stale)} moods from history of {mood.owner_id}")

        return trimmed

    async def list_moods(
        self,
        owner_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MoodRecord]:
        query = "SELECT * FROM moods WHERE owner_id = ?"
        params: List[Any] = [owner_id]
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(format_timestamp(start))
        if end is not None:
            query += " AND timestamp <= ?"
            params.append(format_timestamp(end))
        query += " ORDER BY timestamp, seq"

        def _query():
            with self._connect() as conn:
                return conn.execute(query, params).fetchall()

        rows = await asyncio.to_thread(_query)
        return [self._row_to_mood(row) for row in rows]

    async def ping(self) -> bool:
        def _query():
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()

        await asyncio.to_thread(_query)
        return True

    def close(self) -> None:
        """Connections are per-operation; nothing persistent to close."""
        pass
