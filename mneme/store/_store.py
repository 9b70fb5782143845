from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .. import db
from . import interactions as store_interactions
from . import search as store_search
from . import state as store_state
from .types import FileIndexRow, InteractionHit, InteractionRow, PreCompactBackup, SaveState


class InteractionStore:
    """Handle on the per-project ``local.db``.

    Owned by the caller; use :func:`open_store` (or ``with InteractionStore(...)``)
    so the connection is closed on every exit path.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        busy_timeout_ms: int = db.DEFAULT_BUSY_TIMEOUT_MS,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(
            self.db_path, busy_timeout_ms=busy_timeout_ms, check_same_thread=check_same_thread
        )
        try:
            db.initialize_schema(self.conn)
        except Exception:
            self.conn.close()
            raise

    def __enter__(self) -> InteractionStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.conn.close()

    # interactions

    def insert_interactions(self, rows: Sequence[InteractionRow]) -> int:
        return store_interactions.insert_interactions(self, rows)

    def replace_interactions(self, claude_session_id: str, rows: Sequence[InteractionRow]) -> int:
        return store_interactions.replace_interactions(self, claude_session_id, rows)

    def delete_interactions(self, claude_session_id: str) -> int:
        return store_interactions.delete_interactions(self, claude_session_id)

    def count_interactions(
        self, *, claude_session_id: str | None = None, session_id: str | None = None
    ) -> int:
        return store_interactions.count_interactions(
            self, claude_session_id=claude_session_id, session_id=session_id
        )

    def get_interactions(
        self, session_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[dict[str, Any]]:
        return store_interactions.get_interactions(self, session_id, limit=limit, offset=offset)

    def index_files(self, rows: Sequence[FileIndexRow]) -> int:
        return store_interactions.index_files(self, rows)

    def clear_file_index(self, session_id: str, project_path: str) -> None:
        store_interactions.clear_file_index(self, session_id, project_path)

    def files_for_paths(self, project_path: str, file_paths: Sequence[str]) -> list[dict[str, Any]]:
        return store_interactions.files_for_paths(self, project_path, file_paths)

    # backups and save state

    def insert_backup(
        self,
        *,
        session_id: str,
        project_path: str,
        owner: str,
        interactions: list[dict[str, Any]],
    ) -> int:
        return store_state.insert_backup(
            self,
            session_id=session_id,
            project_path=project_path,
            owner=owner,
            interactions=interactions,
        )

    def latest_backup(self, session_id: str) -> PreCompactBackup | None:
        return store_state.latest_backup(self, session_id)

    def delete_backups(self, session_id: str) -> int:
        return store_state.delete_backups(self, session_id)

    def get_save_state(self, claude_session_id: str) -> SaveState | None:
        return store_state.get_save_state(self, claude_session_id)

    def upsert_save_state(
        self,
        *,
        claude_session_id: str,
        mneme_session_id: str,
        project_path: str,
        last_saved_line: int,
        last_saved_timestamp: str | None,
    ) -> None:
        store_state.upsert_save_state(
            self,
            claude_session_id=claude_session_id,
            mneme_session_id=mneme_session_id,
            project_path=project_path,
            last_saved_line=last_saved_line,
            last_saved_timestamp=last_saved_timestamp,
        )

    def mark_committed(
        self, claude_session_id: str, *, mneme_session_id: str, project_path: str
    ) -> None:
        store_state.mark_committed(
            self, claude_session_id, mneme_session_id=mneme_session_id, project_path=project_path
        )

    def delete_save_state(self, claude_session_id: str) -> None:
        store_state.delete_save_state(self, claude_session_id)

    def stale_uncommitted(self, grace_days: int) -> list[dict[str, Any]]:
        return store_state.stale_uncommitted(self, grace_days)

    # search

    def search_fts(
        self, keywords: Sequence[str], project_path: str, *, limit: int = 10
    ) -> list[InteractionHit]:
        return store_search.search_fts(self, keywords, project_path, limit=limit)

    def search_like(
        self, keywords: Sequence[str], project_path: str, *, limit: int = 10
    ) -> list[InteractionHit]:
        return store_search.search_like(self, keywords, project_path, limit=limit)

    def stats(self) -> dict[str, Any]:
        counts = {}
        for table in ("interactions", "pre_compact_backups", "session_save_state", "file_index"):
            row = self.conn.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()
            counts[table] = int(row["count"]) if row else 0
        committed = self.conn.execute(
            "SELECT COUNT(*) AS count FROM session_save_state WHERE is_committed = 1"
        ).fetchone()
        size_bytes = self.db_path.stat().st_size if self.db_path.exists() else 0
        return {
            "path": str(self.db_path),
            "size_bytes": size_bytes,
            "interactions": counts["interactions"],
            "backups": counts["pre_compact_backups"],
            "tracked_conversations": counts["session_save_state"],
            "committed_conversations": int(committed["count"]) if committed else 0,
            "indexed_files": counts["file_index"],
        }


@contextmanager
def open_store(
    db_path: Path | str, *, busy_timeout_ms: int = db.DEFAULT_BUSY_TIMEOUT_MS
) -> Iterator[InteractionStore]:
    store = InteractionStore(db_path, busy_timeout_ms=busy_timeout_ms)
    try:
        yield store
    finally:
        store.close()


@contextmanager
def open_existing_store(
    db_path: Path | str, *, busy_timeout_ms: int = db.DEFAULT_BUSY_TIMEOUT_MS
) -> Iterator[InteractionStore | None]:
    """Like :func:`open_store` but yields ``None`` instead of creating a missing database."""

    if not Path(db_path).expanduser().exists():
        yield None
        return
    with open_store(db_path, busy_timeout_ms=busy_timeout_ms) as store:
        yield store
