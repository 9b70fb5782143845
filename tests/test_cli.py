from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from mneme.cli import app
from mneme.commands import session_cmds
from mneme.config import read_config_file
from mneme.errors import StoreError
from mneme.paths import MnemePaths

runner = CliRunner()

CONV = "aaaaaaaa-1111-2222-3333-444444444444"


def test_init_creates_tree_once(tmp_path: Path) -> None:
    first = runner.invoke(app, ["init"])
    second = runner.invoke(app, ["init"])

    assert first.exit_code == 0
    assert "Initialized" in first.stdout
    assert (tmp_path / "project" / ".mneme" / "tags.json").exists()
    assert second.exit_code == 0
    assert "already" in second.stdout


def test_commands_require_init(tmp_path: Path) -> None:
    result = runner.invoke(app, ["search", "login", "--project", str(tmp_path / "elsewhere")])

    assert result.exit_code == 1


def test_search_json_output(paths: MnemePaths, session_writer) -> None:
    session_writer("sess0001", title="Login flow")

    result = runner.invoke(app, ["search", "login", "--json"])

    assert result.exit_code == 0
    items = json.loads(result.stdout)
    assert [item["id"] for item in items] == ["sess0001"]
    assert not paths.db_path.exists()


def test_search_rejects_unknown_type(paths: MnemePaths) -> None:
    result = runner.invoke(app, ["search", "login", "--type", "decision"])

    assert result.exit_code == 1


def test_save_then_find_by_file(paths: MnemePaths, two_turns: Path) -> None:
    saved = runner.invoke(app, ["save", CONV, "--transcript", str(two_turns)])
    found = runner.invoke(app, ["files", "src/app.py"])

    assert saved.exit_code == 0
    assert "Saved 4 interactions" in saved.stdout
    assert found.exit_code == 0
    assert "aaaaaaaa" in found.stdout


def test_save_reports_store_failure(
    paths: MnemePaths, two_turns: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def failing_save(*args, **kwargs):
        raise StoreError("insert failed: database is locked")

    monkeypatch.setattr(session_cmds, "save_interactions", failing_save)

    result = runner.invoke(app, ["save", CONV, "--transcript", str(two_turns)])

    assert result.exit_code == 1
    assert "database is locked" in result.stdout
    assert not isinstance(result.exception, StoreError)


def test_save_with_missing_transcript_fails(paths: MnemePaths, tmp_path: Path) -> None:
    result = runner.invoke(app, ["save", CONV, "--transcript", str(tmp_path / "nope.jsonl")])

    assert result.exit_code == 1


def test_show_prints_session_json(paths: MnemePaths, session_writer) -> None:
    session_writer("sess0001", title="Routing")

    result = runner.invoke(app, ["show", "sess0001"])
    missing = runner.invoke(app, ["show", "nosuch00"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["title"] == "Routing"
    assert missing.exit_code == 1


def test_timeline_and_missing_session(paths: MnemePaths, session_writer) -> None:
    session_writer("sess0001", title="First")
    session_writer("sess0002", title="Second", resumedFrom="sess0001")

    result = runner.invoke(app, ["timeline", "sess0002"])
    missing = runner.invoke(app, ["timeline", "nosuch00"])

    assert result.exit_code == 0
    assert "sess0002" in result.stdout
    assert "sess0001" in result.stdout
    assert missing.exit_code == 1


def test_rebuild_indexes_and_stats(paths: MnemePaths, session_writer) -> None:
    session_writer("sess0001")

    rebuilt = runner.invoke(app, ["rebuild-indexes"])
    stats = runner.invoke(app, ["stats"])

    assert rebuilt.exit_code == 0
    assert "sessions: 1 items in 1 months" in rebuilt.stdout
    assert stats.exit_code == 0
    assert "Sessions: 1" in stats.stdout
    assert "local.db not created yet" in stats.stdout


def test_config_set_and_show() -> None:
    result = runner.invoke(app, ["config", "set", "grace_days", "3"])
    policy = runner.invoke(app, ["config", "set", "cleanup_policy", "never"])
    shown = runner.invoke(app, ["config", "show"])

    assert result.exit_code == 0
    assert policy.exit_code == 0
    assert read_config_file() == {"grace_days": 3, "cleanup_policy": "never"}
    assert "grace_days: 3" in shown.stdout
    assert "cleanup_policy: never" in shown.stdout


def test_config_set_rejects_bad_values() -> None:
    assert runner.invoke(app, ["config", "set", "nope", "1"]).exit_code == 1
    assert runner.invoke(app, ["config", "set", "grace_days", "soon"]).exit_code == 1
    assert runner.invoke(app, ["config", "set", "cleanup_policy", "sometimes"]).exit_code == 1
    assert read_config_file() == {}


def test_hook_session_start_prints_json(paths: MnemePaths, session_writer) -> None:
    session_writer("sess0001", title="Earlier work")
    payload = json.dumps({"session_id": CONV, "cwd": str(paths.project_path)})

    result = runner.invoke(app, ["hook", "session-start"], input=payload)

    assert result.exit_code == 0
    output = json.loads(result.stdout)
    assert "Earlier work" in output["hookSpecificOutput"]["additionalContext"]


def test_hook_without_project_prints_empty_object(tmp_path: Path) -> None:
    payload = json.dumps({"session_id": CONV, "cwd": str(tmp_path / "bare")})

    result = runner.invoke(app, ["hook", "session-start"], input=payload)

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {}


def test_hook_rejects_malformed_input() -> None:
    result = runner.invoke(app, ["hook", "pre-compact"], input="not json")

    assert result.exit_code == 1
