from __future__ import annotations

from typing import Any, TypedDict


class InteractionRow(TypedDict):
    session_id: str
    claude_session_id: str
    project_path: str
    repository: str | None
    repository_url: str | None
    repository_root: str | None
    owner: str
    role: str
    content: str
    thinking: str | None
    tool_calls: str | None
    timestamp: str
    is_compact_summary: int
    agent_id: str | None
    agent_type: str | None


class FileIndexRow(TypedDict):
    session_id: str
    project_path: str
    file_path: str
    tool_name: str | None
    timestamp: str


class SaveState(TypedDict):
    claude_session_id: str
    mneme_session_id: str
    project_path: str
    last_saved_timestamp: str | None
    last_saved_line: int
    is_committed: int
    created_at: str | None
    updated_at: str | None


class PreCompactBackup(TypedDict):
    id: int
    session_id: str
    project_path: str
    owner: str
    interactions: list[dict[str, Any]]
    created_at: str


class InteractionHit(TypedDict):
    session_id: str
    content: str
    timestamp: str
    snippet: str
