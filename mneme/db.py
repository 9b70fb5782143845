from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
DEFAULT_BUSY_TIMEOUT_MS = 5000


def connect(
    db_path: Path | str,
    *,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        path,
        timeout=max(busy_timeout_ms, 0) / 1000,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS interactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            claude_session_id TEXT,
            project_path TEXT NOT NULL,
            repository TEXT,
            repository_url TEXT,
            repository_root TEXT,
            owner TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
            content TEXT NOT NULL,
            thinking TEXT,
            tool_calls TEXT,
            timestamp TEXT NOT NULL,
            is_compact_summary INTEGER DEFAULT 0,
            agent_id TEXT,
            agent_type TEXT,
            created_at TEXT DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_interactions_session ON interactions(session_id);
        CREATE INDEX IF NOT EXISTS idx_interactions_owner ON interactions(owner);
        CREATE INDEX IF NOT EXISTS idx_interactions_timestamp ON interactions(timestamp);
        CREATE INDEX IF NOT EXISTS idx_interactions_project ON interactions(project_path);

        CREATE TABLE IF NOT EXISTS pre_compact_backups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            project_path TEXT NOT NULL,
            owner TEXT NOT NULL,
            interactions TEXT NOT NULL,
            created_at TEXT DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_backups_session ON pre_compact_backups(session_id);

        CREATE TABLE IF NOT EXISTS session_save_state (
            claude_session_id TEXT PRIMARY KEY,
            mneme_session_id TEXT NOT NULL,
            project_path TEXT NOT NULL,
            last_saved_timestamp TEXT,
            last_saved_line INTEGER DEFAULT 0,
            is_committed INTEGER DEFAULT 0,
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_save_state_mneme_session
            ON session_save_state(mneme_session_id);
        CREATE INDEX IF NOT EXISTS idx_save_state_project ON session_save_state(project_path);

        CREATE TABLE IF NOT EXISTS file_index (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            session_id TEXT NOT NULL,
            project_path TEXT NOT NULL,
            file_path TEXT NOT NULL,
            tool_name TEXT,
            timestamp TEXT NOT NULL,
            created_at TEXT DEFAULT (datetime('now'))
        );
        CREATE INDEX IF NOT EXISTS idx_file_index_session ON file_index(session_id);
        CREATE INDEX IF NOT EXISTS idx_file_index_project_file
            ON file_index(project_path, file_path);
        CREATE UNIQUE INDEX IF NOT EXISTS idx_file_index_touch
            ON file_index(session_id, project_path, file_path, timestamp);
        """
    )
    # Databases created before resume tracking lack these columns.
    _ensure_column(conn, "interactions", "claude_session_id", "TEXT")
    _ensure_column(conn, "interactions", "repository_url", "TEXT")
    _ensure_column(conn, "interactions", "repository_root", "TEXT")
    _ensure_column(conn, "interactions", "agent_id", "TEXT")
    _ensure_column(conn, "interactions", "agent_type", "TEXT")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_interactions_claude_session "
        "ON interactions(claude_session_id)"
    )
    _initialize_fts(conn)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()


def _initialize_fts(conn: sqlite3.Connection) -> None:
    try:
        conn.executescript(
            """
            CREATE VIRTUAL TABLE IF NOT EXISTS interactions_fts USING fts5(
                content,
                thinking,
                content='interactions',
                content_rowid='id',
                tokenize='unicode61'
            );

            CREATE TRIGGER IF NOT EXISTS interactions_ai AFTER INSERT ON interactions BEGIN
                INSERT INTO interactions_fts(rowid, content, thinking)
                VALUES (new.id, new.content, new.thinking);
            END;

            CREATE TRIGGER IF NOT EXISTS interactions_ad AFTER DELETE ON interactions BEGIN
                INSERT INTO interactions_fts(interactions_fts, rowid, content, thinking)
                VALUES ('delete', old.id, old.content, old.thinking);
            END;

            CREATE TRIGGER IF NOT EXISTS interactions_au AFTER UPDATE ON interactions BEGIN
                INSERT INTO interactions_fts(interactions_fts, rowid, content, thinking)
                VALUES ('delete', old.id, old.content, old.thinking);
                INSERT INTO interactions_fts(rowid, content, thinking)
                VALUES (new.id, new.content, new.thinking);
            END;
            """
        )
    except sqlite3.OperationalError as exc:
        # Interaction search degrades to LIKE scans without FTS5.
        logger.warning("fts5 unavailable, full-text index disabled", exc_info=exc)


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> Any:
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {}


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
