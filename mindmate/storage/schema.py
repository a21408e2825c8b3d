"""Database schema for mindmate SQLite storage.

Contains:
- Server-side record tables (SCHEMA)
- Client-side durable queue and local state tables (CLIENT_SCHEMA)
- Table allowlist (ALLOWED_TABLES, validate_table_name)
- Database initialization (init_db)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Allowed table names for SQL queries (prevents SQL injection via table names)
ALLOWED_TABLES = frozenset(
    {
        "schema_version",
        "journals",
        "moods",
        "sync_queue",
        "local_journals",
        "local_moods",
        "sync_meta",
        "drafts",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Journal entries; cipher_content is the server-wrapped client ciphertext
CREATE TABLE IF NOT EXISTS journals (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    cipher_content TEXT NOT NULL,
    mood TEXT,
    intensity INTEGER,
    tags TEXT NOT NULL DEFAULT '[]'
);
CREATE INDEX IF NOT EXISTS idx_journals_owner ON journals(owner_id);
CREATE INDEX IF NOT EXISTS idx_journals_owner_created ON journals(owner_id, created_at);

-- Mood history, embedded per owner and capped by the MoodHistory aggregate
CREATE TABLE IF NOT EXISTS moods (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    mood TEXT NOT NULL,
    intensity INTEGER NOT NULL CHECK (intensity BETWEEN 1 AND 10),
    note TEXT
);
CREATE INDEX IF NOT EXISTS idx_moods_owner_ts ON moods(owner_id, timestamp);
"""

CLIENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Durable append-only log of unconfirmed change intents
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    change_id TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL,
    intent TEXT NOT NULL,
    occurred_at TEXT NOT NULL,
    queued_at TEXT NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    last_attempt_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_synced ON sync_queue(synced);

-- Optimistic local copies shown to the user before the server confirms
CREATE TABLE IF NOT EXISTS local_journals (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0,
    local_updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS local_moods (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    is_synced INTEGER NOT NULL DEFAULT 0,
    timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_meta (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at TEXT
);

-- In-progress journal text; never a change intent
CREATE TABLE IF NOT EXISTS drafts (
    key TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def init_db(conn: sqlite3.Connection, schema: str = SCHEMA) -> None:
    """Create tables if missing and record the schema version."""
    conn.executescript(schema)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row else None
    if current is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        logger.debug(f"Initialized schema version {SCHEMA_VERSION}")
    elif current != SCHEMA_VERSION:
        logger.warning(
            f"Database schema version {current} differs from expected {SCHEMA_VERSION}"
        )
    conn.commit()
