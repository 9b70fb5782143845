from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from mneme import db
from mneme.errors import StoreError
from mneme.store import InteractionRow, InteractionStore


def _row(content: str, *, role: str = "user") -> InteractionRow:
    return InteractionRow(
        session_id="conv-1",
        claude_session_id="conv-1",
        project_path="/work/project",
        repository=None,
        repository_url=None,
        repository_root=None,
        owner="tester",
        role=role,
        content=content,
        thinking=None,
        tool_calls=None,
        timestamp="2026-01-15T10:00:00.000Z",
        is_compact_summary=0,
        agent_id=None,
        agent_type=None,
    )


def test_initialize_schema_sets_user_version(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "local.db")
    try:
        db.initialize_schema(conn)
        row = conn.execute("PRAGMA user_version").fetchone()
        tables = {
            r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    finally:
        conn.close()

    assert row is not None
    assert int(row[0]) == db.SCHEMA_VERSION
    assert {"interactions", "pre_compact_backups", "session_save_state", "file_index"} <= tables
    assert "interactions_fts" in tables


def test_initialize_schema_adds_missing_columns(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "local.db")
    try:
        conn.execute(
            """
            CREATE TABLE interactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                project_path TEXT NOT NULL,
                repository TEXT,
                owner TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                thinking TEXT,
                tool_calls TEXT,
                timestamp TEXT NOT NULL,
                is_compact_summary INTEGER DEFAULT 0
            )
            """
        )
        conn.commit()
        db.initialize_schema(conn)
        db.initialize_schema(conn)
        columns = {r[1] for r in conn.execute("PRAGMA table_info(interactions)")}
    finally:
        conn.close()

    assert {"claude_session_id", "repository_url", "agent_id", "agent_type"} <= columns


def test_failed_insert_rolls_back(tmp_path: Path) -> None:
    with InteractionStore(tmp_path / "local.db") as store:
        store.insert_interactions([_row("kept")])

        with pytest.raises(StoreError) as excinfo:
            store.insert_interactions([_row("ok"), _row("bad", role="system")])

        assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)
        assert store.count_interactions() == 1


def test_replace_interactions_is_atomic(tmp_path: Path) -> None:
    with InteractionStore(tmp_path / "local.db") as store:
        store.insert_interactions([_row("first"), _row("second", role="assistant")])

        with pytest.raises(StoreError):
            store.replace_interactions("conv-1", [_row("new", role="system")])

        assert store.count_interactions(claude_session_id="conv-1") == 2
        assert store.replace_interactions("conv-1", [_row("new")]) == 1
        assert [item["content"] for item in store.get_interactions("conv-1")] == ["new"]


def test_fts_index_follows_deletes(tmp_path: Path) -> None:
    with InteractionStore(tmp_path / "local.db") as store:
        store.insert_interactions([_row("refactor the cache layer")])

        assert len(store.search_fts(["cache"], "/work/project")) == 1
        store.delete_interactions("conv-1")
        assert store.search_fts(["cache"], "/work/project") == []


def test_stats_counts_rows(tmp_path: Path) -> None:
    with InteractionStore(tmp_path / "local.db") as store:
        store.insert_interactions([_row("a"), _row("b", role="assistant")])
        store.mark_committed("conv-1", mneme_session_id="conv-1", project_path="/work/project")
        stats = store.stats()

    assert stats["interactions"] == 2
    assert stats["tracked_conversations"] == 1
    assert stats["committed_conversations"] == 1


def test_store_closes_connection_when_schema_setup_fails(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    opened: list[sqlite3.Connection] = []

    def failing_schema(conn: sqlite3.Connection) -> None:
        opened.append(conn)
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(db, "initialize_schema", failing_schema)

    with pytest.raises(sqlite3.OperationalError):
        InteractionStore(tmp_path / "local.db")

    with pytest.raises(sqlite3.ProgrammingError):
        opened[0].execute("SELECT 1")
