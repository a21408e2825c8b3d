"""Durable local storage for the offline client.

Holds, in one SQLite file:
- the append-only log of unconfirmed change intents (``sync_queue``)
- optimistic local copies of journals and moods (``local_journals``,
  ``local_moods``), each tagged synced/unsynced
- in-progress drafts, kept apart from the queue
- small sync metadata values

The ClientQueue is the only writer of the intent log.
"""

import contextlib
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..errors import StorageError
from ..storage.schema import CLIENT_SCHEMA, init_db, validate_table_name
from ..types import (
    SYNC_DEAD_LETTER,
    SYNC_PENDING,
    format_timestamp,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
DEFAULT_DRAFT_KEY = "journal"


@dataclass
class QueuedIntent:
    """An intent waiting in the durable log."""

    id: int
    change_id: str
    type: str
    intent: Dict[str, Any]  # wire shape
    occurred_at: Optional[datetime] = None
    queued_at: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


class LocalStore:
    """SQLite-backed local state for one device.

    Args:
        db_path: Path to the client database file.
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                init_db(conn, CLIENT_SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open local store at {self.db_path}: {e}") from e

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def _now(self) -> str:
        return format_timestamp(utc_now())

    def _row_to_queued(self, row: sqlite3.Row) -> QueuedIntent:
        return QueuedIntent(
            id=row["id"],
            change_id=row["change_id"],
            type=row["type"],
            intent=json.loads(row["intent"]),
            occurred_at=parse_datetime(row["occurred_at"]),
            queued_at=parse_datetime(row["queued_at"]),
            retry_count=row["retry_count"] or 0,
            last_error=row["last_error"],
            last_attempt_at=parse_datetime(row["last_attempt_at"]),
        )

    # === Intent log ===

    def append_intent(self, wire: Dict[str, Any]) -> int:
        """Append an intent to the durable log.

        Re-appending a change id that is already logged is a no-op.

        Raises:
            StorageError: If the log cannot be persisted.
        """
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    """INSERT INTO sync_queue
                       (change_id, type, intent, occurred_at, queued_at, synced)
                       VALUES (?, ?, ?, ?, ?, ?)
                       ON CONFLICT(change_id) DO NOTHING""",
                    (
                        wire["id"],
                        wire["type"],
                        json.dumps(wire),
                        str(wire["timestamp"]),
                        self._now(),
                        SYNC_PENDING,
                    ),
                )
                return cursor.lastrowid or 0
        except sqlite3.Error as e:
            logger.error(f"Failed to persist queued intent {wire.get('id')}: {e}")
            raise StorageError(f"Cannot persist offline queue: {e}") from e

    def pending_intents(self, limit: Optional[int] = None) -> List[QueuedIntent]:
        """Pending intents in append order."""
        query = "SELECT * FROM sync_queue WHERE synced = ? ORDER BY id"
        params: List[Any] = [SYNC_PENDING]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_queued(row) for row in rows]

    def pending_count(self) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE synced = ?", (SYNC_PENDING,)
            ).fetchone()[0]

    def remove_intents(self, change_ids: Iterable[str]) -> int:
        """Remove confirmed intents from the log."""
        ids = list(change_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" * len(ids))
        with self._connect() as conn:
            cursor = conn.execute(
                f"DELETE FROM sync_queue WHERE change_id IN ({placeholders})", ids
            )
            return cursor.rowcount

    def record_failure(self, change_id: str, error: str, max_retries: int = MAX_RETRIES) -> int:
        """Record a failed attempt; dead-letter the entry once retries run out.

        Returns:
            The entry's retry count after this failure.
        """
        with self._connect() as conn:
            conn.execute(
                """UPDATE sync_queue
                   SET retry_count = retry_count + 1,
                       last_error = ?,
                       last_attempt_at = ?
                   WHERE change_id = ?""",
                (error[:500], self._now(), change_id),
            )
            row = conn.execute(
                "SELECT retry_count FROM sync_queue WHERE change_id = ?", (change_id,)
            ).fetchone()
            retry_count = row["retry_count"] if row else 0
            if retry_count >= max_retries:
                conn.execute(
                    "UPDATE sync_queue SET synced = ? WHERE change_id = ?",
                    (SYNC_DEAD_LETTER, change_id),
                )
                logger.warning(f"Intent {change_id} exceeded max retries, moved to dead letter")
        return retry_count

    def dead_letter(self, change_id: str, error: str) -> None:
        """Move an intent that can never succeed out of the pending set."""
        with self._connect() as conn:
            conn.execute(
                """UPDATE sync_queue
                   SET synced = ?, last_error = ?, last_attempt_at = ?
                   WHERE change_id = ?""",
                (SYNC_DEAD_LETTER, error[:500], self._now(), change_id),
            )

    def dead_letters(self) -> List[QueuedIntent]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_queue WHERE synced = ? ORDER BY id", (SYNC_DEAD_LETTER,)
            ).fetchall()
        return [self._row_to_queued(row) for row in rows]

    def requeue_dead_letters(self, change_ids: Optional[List[str]] = None) -> int:
        """Re-enqueue dead-lettered entries for retry.

        Args:
            change_ids: Specific change ids to requeue, or None for all.
        Returns:
            Number of entries requeued.
        """
        with self._connect() as conn:
            if change_ids:
                placeholders = ",".join("?" for _ in change_ids)
                cursor = conn.execute(
                    f"UPDATE sync_queue SET synced = ?, retry_count = 0, last_error = NULL "
                    f"WHERE synced = ? AND change_id IN ({placeholders})",
                    [SYNC_PENDING, SYNC_DEAD_LETTER, *change_ids],
                )
            else:
                cursor = conn.execute(
                    "UPDATE sync_queue SET synced = ?, retry_count = 0, last_error = NULL "
                    "WHERE synced = ?",
                    (SYNC_PENDING, SYNC_DEAD_LETTER),
                )
            return cursor.rowcount

    def queue_status(self) -> Dict[str, Any]:
        """Queue counts by state and by intent type."""
        with self._connect() as conn:
            pending = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE synced = ?", (SYNC_PENDING,)
            ).fetchone()[0]
            dead_letter = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE synced = ?", (SYNC_DEAD_LETTER,)
            ).fetchone()[0]
            type_rows = conn.execute(
                """SELECT type, COUNT(*) AS count FROM sync_queue
                   WHERE synced = ? GROUP BY type""",
                (SYNC_PENDING,),
            ).fetchall()

        return {
            "pending": pending,
            "dead_letter": dead_letter,
            "by_type": {row["type"]: row["count"] for row in type_rows},
            "last_sync_time": self.get_meta("last_sync_time"),
        }

    # === Optimistic local state ===

    def put_local(self, table: str, record_id: str, data: Dict[str, Any], is_synced: bool) -> None:
        """Insert or replace an optimistic local copy."""
        validate_table_name(table)
        order_column = "local_updated_at" if table == "local_journals" else "timestamp"
        order_value = data.get("updatedAt") or data.get("timestamp") or self._now()
        with self._connect() as conn:
            conn.execute(
                f"""INSERT OR REPLACE INTO {table} (id, data, is_synced, {order_column})
                    VALUES (?, ?, ?, ?)""",
                (record_id, json.dumps(data), int(is_synced), str(order_value)),
            )

    def get_local(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        validate_table_name(table)
        with self._connect() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (record_id,)).fetchone()
        if not row:
            return None
        data = json.loads(row["data"])
        data["isSynced"] = bool(row["is_synced"])
        return data

    def set_local_synced(self, table: str, record_id: str, is_synced: bool = True) -> None:
        validate_table_name(table)
        with self._connect() as conn:
            conn.execute(
                f"UPDATE {table} SET is_synced = ? WHERE id = ?", (int(is_synced), record_id)
            )

    def delete_local(self, table: str, record_id: str) -> bool:
        validate_table_name(table)
        with self._connect() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def list_local(self, table: str) -> List[Dict[str, Any]]:
        """Local copies, newest first."""
        validate_table_name(table)
        order_column = "local_updated_at" if table == "local_journals" else "timestamp"
        with self._connect() as conn:
            rows = conn.execute(f"SELECT * FROM {table} ORDER BY {order_column} DESC").fetchall()
        records = []
        for row in rows:
            data = json.loads(row["data"])
            data["isSynced"] = bool(row["is_synced"])
            records.append(data)
        return records

    def replace_local(
        self,
        table: str,
        canonical: List[Dict[str, Any]],
        keep_ids: Iterable[str] = (),
        id_key: str = "_id",
    ) -> int:
        """Replace local copies with canonical server state.

        Unsynced copies whose id is in ``keep_ids`` survive; everything else
        is replaced. Returns the number of canonical records stored.
        """
        validate_table_name(table)
        keep = list(keep_ids)
        order_column = "local_updated_at" if table == "local_journals" else "timestamp"
        with self._connect() as conn:
            if keep:
                placeholders = ",".join("?" * len(keep))
                conn.execute(
                    f"DELETE FROM {table} WHERE NOT (is_synced = 0 AND id IN ({placeholders}))",
                    keep,
                )
            else:
                conn.execute(f"DELETE FROM {table}")
            for record in canonical:
                order_value = record.get("updatedAt") or record.get("timestamp") or self._now()
                conn.execute(
                    f"""INSERT OR REPLACE INTO {table} (id, data, is_synced, {order_column})
                        VALUES (?, ?, 1, ?)""",
                    (str(record[id_key]), json.dumps(record), str(order_value)),
                )
        return len(canonical)

    # === Drafts ===

    def save_draft(self, text: str, key: str = DEFAULT_DRAFT_KEY) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO drafts (key, text, updated_at) VALUES (?, ?, ?)",
                (key, text, self._now()),
            )

    def load_draft(self, key: str = DEFAULT_DRAFT_KEY) -> str:
        with self._connect() as conn:
            row = conn.execute("SELECT text FROM drafts WHERE key = ?", (key,)).fetchone()
        return row["text"] if row else ""

    def clear_draft(self, key: str = DEFAULT_DRAFT_KEY) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM drafts WHERE key = ?", (key,))

    # === Sync metadata ===

    def get_meta(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, self._now()),
            )
