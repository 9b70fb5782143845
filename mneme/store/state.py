from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from .types import PreCompactBackup, SaveState

if TYPE_CHECKING:
    from ._store import InteractionStore

logger = logging.getLogger(__name__)


def insert_backup(
    store: InteractionStore,
    *,
    session_id: str,
    project_path: str,
    owner: str,
    interactions: list[dict[str, Any]],
) -> int:
    with store.conn:
        cur = store.conn.execute(
            """
            INSERT INTO pre_compact_backups (session_id, project_path, owner, interactions)
            VALUES (?, ?, ?, ?)
            """,
            (session_id, project_path, owner, json.dumps(interactions, ensure_ascii=False)),
        )
    return int(cur.lastrowid or 0)


def latest_backup(store: InteractionStore, session_id: str) -> PreCompactBackup | None:
    row = store.conn.execute(
        """
        SELECT id, session_id, project_path, owner, interactions, created_at
        FROM pre_compact_backups
        WHERE session_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        (session_id,),
    ).fetchone()
    if row is None:
        return None
    try:
        interactions = json.loads(row["interactions"])
    except json.JSONDecodeError:
        logger.warning("ignoring unreadable pre-compact backup %s for %s", row["id"], session_id)
        return None
    if not isinstance(interactions, list):
        logger.warning("ignoring malformed pre-compact backup %s for %s", row["id"], session_id)
        return None
    return {
        "id": int(row["id"]),
        "session_id": row["session_id"],
        "project_path": row["project_path"],
        "owner": row["owner"],
        "interactions": [item for item in interactions if isinstance(item, dict)],
        "created_at": row["created_at"],
    }


def delete_backups(store: InteractionStore, session_id: str) -> int:
    with store.conn:
        cur = store.conn.execute(
            "DELETE FROM pre_compact_backups WHERE session_id = ?", (session_id,)
        )
    return int(cur.rowcount or 0)


def get_save_state(store: InteractionStore, claude_session_id: str) -> SaveState | None:
    row = store.conn.execute(
        "SELECT * FROM session_save_state WHERE claude_session_id = ?", (claude_session_id,)
    ).fetchone()
    if row is None:
        return None
    return {
        "claude_session_id": row["claude_session_id"],
        "mneme_session_id": row["mneme_session_id"],
        "project_path": row["project_path"],
        "last_saved_timestamp": row["last_saved_timestamp"],
        "last_saved_line": int(row["last_saved_line"] or 0),
        "is_committed": int(row["is_committed"] or 0),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def upsert_save_state(
    store: InteractionStore,
    *,
    claude_session_id: str,
    mneme_session_id: str,
    project_path: str,
    last_saved_line: int,
    last_saved_timestamp: str | None,
) -> None:
    with store.conn:
        store.conn.execute(
            """
            INSERT INTO session_save_state (
                claude_session_id, mneme_session_id, project_path,
                last_saved_line, last_saved_timestamp
            ) VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(claude_session_id) DO UPDATE SET
                last_saved_line = excluded.last_saved_line,
                last_saved_timestamp = excluded.last_saved_timestamp,
                updated_at = datetime('now')
            """,
            (
                claude_session_id,
                mneme_session_id,
                project_path,
                last_saved_line,
                last_saved_timestamp,
            ),
        )


def mark_committed(
    store: InteractionStore, claude_session_id: str, *, mneme_session_id: str, project_path: str
) -> None:
    with store.conn:
        store.conn.execute(
            """
            INSERT INTO session_save_state (
                claude_session_id, mneme_session_id, project_path, is_committed
            ) VALUES (?, ?, ?, 1)
            ON CONFLICT(claude_session_id) DO UPDATE SET
                is_committed = 1,
                updated_at = datetime('now')
            """,
            (claude_session_id, mneme_session_id, project_path),
        )


def delete_save_state(store: InteractionStore, claude_session_id: str) -> None:
    with store.conn:
        store.conn.execute(
            "DELETE FROM session_save_state WHERE claude_session_id = ?", (claude_session_id,)
        )


def stale_uncommitted(store: InteractionStore, grace_days: int) -> list[dict[str, Any]]:
    days = max(1, int(grace_days))
    rows = store.conn.execute(
        """
        SELECT claude_session_id, mneme_session_id, project_path, updated_at
        FROM session_save_state
        WHERE is_committed = 0 AND updated_at <= datetime('now', ?)
        ORDER BY updated_at ASC
        """,
        (f"-{days} days",),
    ).fetchall()
    return [dict(row) for row in rows]
