from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .types import InteractionHit

if TYPE_CHECKING:
    from ._store import InteractionStore


def search_fts(
    store: InteractionStore,
    keywords: Sequence[str],
    project_path: str,
    *,
    limit: int = 10,
) -> list[InteractionHit]:
    """Ranked full-text match; raises ``sqlite3.Error`` when FTS is unusable."""

    rows = store.conn.execute(
        """
        SELECT
            i.session_id,
            i.content,
            i.timestamp,
            highlight(interactions_fts, 0, '[', ']') AS content_highlight
        FROM interactions_fts
        JOIN interactions i ON interactions_fts.rowid = i.id
        WHERE interactions_fts MATCH ?
          AND i.project_path = ?
        ORDER BY rank
        LIMIT ?
        """,
        (" OR ".join(keywords), project_path, limit),
    ).fetchall()
    return [
        {
            "session_id": row["session_id"],
            "content": row["content"],
            "timestamp": row["timestamp"],
            "snippet": (row["content_highlight"] or row["content"] or "")[:150],
        }
        for row in rows
    ]


def search_like(
    store: InteractionStore,
    keywords: Sequence[str],
    project_path: str,
    *,
    limit: int = 10,
) -> list[InteractionHit]:
    if not keywords:
        return []
    clauses = " OR ".join("(content LIKE ? OR thinking LIKE ?)" for _ in keywords)
    params: list[Any] = [project_path]
    for keyword in keywords:
        pattern = f"%{keyword}%"
        params.extend([pattern, pattern])
    params.append(limit)
    rows = store.conn.execute(
        f"""
        SELECT DISTINCT session_id, substr(content, 1, 120) AS snippet, timestamp
        FROM interactions
        WHERE project_path = ?
          AND ({clauses})
        ORDER BY timestamp DESC
        LIMIT ?
        """,
        params,
    ).fetchall()
    return [
        {
            "session_id": row["session_id"],
            "content": row["snippet"] or "",
            "timestamp": row["timestamp"],
            "snippet": row["snippet"] or "",
        }
        for row in rows
    ]
