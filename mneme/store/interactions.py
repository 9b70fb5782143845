from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .. import db
from ..errors import StoreError
from .types import FileIndexRow, InteractionRow

if TYPE_CHECKING:
    from ._store import InteractionStore

_INSERT_INTERACTION = """
    INSERT INTO interactions (
        session_id, claude_session_id, project_path, repository, repository_url,
        repository_root, owner, role, content, thinking, tool_calls, timestamp,
        is_compact_summary, agent_id, agent_type
    ) VALUES (
        :session_id, :claude_session_id, :project_path, :repository, :repository_url,
        :repository_root, :owner, :role, :content, :thinking, :tool_calls, :timestamp,
        :is_compact_summary, :agent_id, :agent_type
    )
"""


def insert_interactions(store: InteractionStore, rows: Sequence[InteractionRow]) -> int:
    try:
        with store.conn:
            store.conn.executemany(_INSERT_INTERACTION, rows)
    except sqlite3.Error as exc:
        raise StoreError(f"failed to insert {len(rows)} interactions") from exc
    return len(rows)


def replace_interactions(
    store: InteractionStore, claude_session_id: str, rows: Sequence[InteractionRow]
) -> int:
    """Delete and re-insert a conversation's rows in a single transaction."""

    try:
        with store.conn:
            store.conn.execute(
                "DELETE FROM interactions WHERE claude_session_id = ?", (claude_session_id,)
            )
            store.conn.executemany(_INSERT_INTERACTION, rows)
    except sqlite3.Error as exc:
        raise StoreError(
            f"failed to save {len(rows)} interactions for {claude_session_id}"
        ) from exc
    return len(rows)


def delete_interactions(store: InteractionStore, claude_session_id: str) -> int:
    with store.conn:
        cur = store.conn.execute(
            "DELETE FROM interactions WHERE claude_session_id = ?", (claude_session_id,)
        )
    return int(cur.rowcount or 0)


def count_interactions(
    store: InteractionStore,
    *,
    claude_session_id: str | None = None,
    session_id: str | None = None,
) -> int:
    clauses: list[str] = []
    params: list[Any] = []
    if claude_session_id is not None:
        clauses.append("claude_session_id = ?")
        params.append(claude_session_id)
    if session_id is not None:
        clauses.append("session_id = ?")
        params.append(session_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    row = store.conn.execute(f"SELECT COUNT(*) AS count FROM interactions {where}", params).fetchone()
    return int(row["count"]) if row else 0


def get_interactions(
    store: InteractionStore, session_id: str, *, limit: int = 100, offset: int = 0
) -> list[dict[str, Any]]:
    rows = store.conn.execute(
        """
        SELECT id, session_id, claude_session_id, project_path, repository, owner, role,
               content, thinking, tool_calls, timestamp, is_compact_summary, agent_id, agent_type
        FROM interactions
        WHERE session_id = ?
        ORDER BY timestamp ASC, id ASC
        LIMIT ? OFFSET ?
        """,
        (session_id, max(limit, 0), max(offset, 0)),
    ).fetchall()
    items = db.rows_to_dicts(rows)
    for item in items:
        item["tool_calls"] = db.from_json(item.get("tool_calls")) if item.get("tool_calls") else None
    return items


def index_files(store: InteractionStore, rows: Sequence[FileIndexRow]) -> int:
    if not rows:
        return 0
    with store.conn:
        cur = store.conn.executemany(
            """
            INSERT OR IGNORE INTO file_index (
                session_id, project_path, file_path, tool_name, timestamp
            ) VALUES (:session_id, :project_path, :file_path, :tool_name, :timestamp)
            """,
            rows,
        )
    return max(int(cur.rowcount or 0), 0)


def clear_file_index(store: InteractionStore, session_id: str, project_path: str) -> None:
    with store.conn:
        store.conn.execute(
            "DELETE FROM file_index WHERE session_id = ? AND project_path = ?",
            (session_id, project_path),
        )


def files_for_paths(
    store: InteractionStore, project_path: str, file_paths: Sequence[str]
) -> list[dict[str, Any]]:
    if not file_paths:
        return []
    placeholders = ",".join("?" for _ in file_paths)
    rows = store.conn.execute(
        f"""
        SELECT session_id, file_path, COUNT(*) AS cnt
        FROM file_index
        WHERE project_path = ? AND file_path IN ({placeholders})
        GROUP BY session_id, file_path
        """,
        (project_path, *file_paths),
    ).fetchall()
    return db.rows_to_dicts(rows)
