from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from mneme.documents import write_document
from mneme.git_info import GitInfo
from mneme.lifecycle import init_project
from mneme.paths import MnemePaths
from mneme.store import InteractionStore, open_store


@pytest.fixture(autouse=True)
def _isolate_mneme_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.setenv("MNEME_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("MNEME_PROJECT_PATH", str(project))
    monkeypatch.setenv("MNEME_CLAUDE_DIR", str(tmp_path / "claude"))
    for var in (
        "MNEME_CLEANUP_POLICY",
        "MNEME_GRACE_DAYS",
        "MNEME_LOG_LEVEL",
        "MNEME_LOG_JSON",
        "MNEME_SEARCH_DEFAULT_LIMIT",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def _reset_mneme_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("mneme")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def paths(tmp_path: Path) -> MnemePaths:
    project_paths = MnemePaths.for_project(tmp_path / "project")
    init_project(project_paths)
    return project_paths


@pytest.fixture
def git(paths: MnemePaths) -> GitInfo:
    return GitInfo(
        owner="tester",
        repository="acme/widgets",
        repository_url="git@github.com:acme/widgets.git",
        repository_root=str(paths.project_path),
        branch="main",
    )


class Transcript:
    """Builds assistant JSONL transcripts entry by entry."""

    def __init__(self) -> None:
        self.entries: list[dict[str, Any] | str] = []
        self._tool_ids = 0

    def user(self, timestamp: str, text: str, **extra: Any) -> Transcript:
        self.entries.append(
            {
                "type": "user",
                "timestamp": timestamp,
                "message": {"role": "user", "content": text},
                **extra,
            }
        )
        return self

    def assistant(
        self,
        timestamp: str,
        text: str | None = None,
        *,
        thinking: str | None = None,
        tools: list[tuple[str, dict[str, Any]]] | None = None,
    ) -> Transcript:
        content: list[dict[str, Any]] = []
        if thinking:
            content.append({"type": "thinking", "thinking": thinking})
        if text:
            content.append({"type": "text", "text": text})
        for name, tool_input in tools or []:
            self._tool_ids += 1
            content.append(
                {"type": "tool_use", "id": f"tool-{self._tool_ids}", "name": name, "input": tool_input}
            )
        self.entries.append(
            {"type": "assistant", "timestamp": timestamp, "message": {"content": content}}
        )
        return self

    def tool_result(
        self, timestamp: str, tool_use_id: str, content: str, *, is_error: bool = False
    ) -> Transcript:
        self.entries.append(
            {
                "type": "user",
                "timestamp": timestamp,
                "message": {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": tool_use_id,
                            "content": content,
                            "is_error": is_error,
                        }
                    ],
                },
            }
        )
        return self

    def raw(self, line: str) -> Transcript:
        self.entries.append(line)
        return self

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [e if isinstance(e, str) else json.dumps(e) for e in self.entries]
        path.write_text("\n".join(lines) + "\n")
        return path


@pytest.fixture
def transcript() -> Transcript:
    return Transcript()


@pytest.fixture
def two_turns(tmp_path: Path, paths: MnemePaths) -> Path:
    """A transcript with two answered prompts that read and edit project files."""

    app_file = str(paths.project_path / "src" / "app.py")
    return (
        Transcript()
        .user("2026-01-15T10:00:00.000Z", "Add a login endpoint")
        .assistant(
            "2026-01-15T10:00:05.000Z",
            "I added the login endpoint.",
            thinking="Need a route first",
            tools=[("Read", {"file_path": app_file})],
        )
        .user("2026-01-15T10:05:00.000Z", "Now add tests")
        .assistant(
            "2026-01-15T10:05:04.000Z",
            "Tests added.",
            tools=[("Edit", {"file_path": app_file})],
        )
        .write(tmp_path / "transcripts" / "conv.jsonl")
    )


def write_session(paths: MnemePaths, session_id: str, created_at: str, **fields: Any) -> Path:
    year, month = created_at[:4], created_at[5:7]
    document = {"id": session_id, "createdAt": created_at, "title": "", "tags": [], **fields}
    return write_document(paths.sessions_dir / year / month / f"{session_id}.json", document)


@pytest.fixture
def session_writer(paths: MnemePaths):
    def _write(session_id: str, created_at: str = "2026-01-15T10:00:00.000Z", **fields: Any) -> Path:
        return write_session(paths, session_id, created_at, **fields)

    return _write


@pytest.fixture
def store(paths: MnemePaths) -> Iterator[InteractionStore]:
    with open_store(paths.db_path) as interaction_store:
        yield interaction_store
