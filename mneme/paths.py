from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

MNEME_DIR_NAME = ".mneme"


def ensure_path(path: str | Path) -> Path:
    resolved = Path(path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def resolve_project_path(project_path: str | Path | None = None) -> Path:
    if project_path:
        return Path(project_path).expanduser().resolve()
    env_path = os.environ.get("MNEME_PROJECT_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.cwd().resolve()


def encode_project_path(project_path: str | Path) -> str:
    return str(project_path).replace("/", "-")


@dataclass(frozen=True)
class MnemePaths:
    project_path: Path

    @classmethod
    def for_project(cls, project_path: str | Path | None = None) -> MnemePaths:
        return cls(resolve_project_path(project_path))

    @property
    def root(self) -> Path:
        return self.project_path / MNEME_DIR_NAME

    @property
    def sessions_dir(self) -> Path:
        return self.root / "sessions"

    @property
    def links_dir(self) -> Path:
        return self.root / "session-links"

    @property
    def indexes_dir(self) -> Path:
        return self.root / ".indexes"

    @property
    def decisions_dir(self) -> Path:
        return self.root / "decisions"

    @property
    def patterns_dir(self) -> Path:
        return self.root / "patterns"

    @property
    def rules_dir(self) -> Path:
        return self.root / "rules"

    @property
    def tags_path(self) -> Path:
        return self.root / "tags.json"

    @property
    def db_path(self) -> Path:
        return self.root / "local.db"

    @property
    def breadcrumb_path(self) -> Path:
        return self.root / ".pending-compact.json"

    def link_path(self, conversation_id: str) -> Path:
        return self.links_dir / f"{conversation_id}.json"

    def session_path_for(self, session_id: str, created_at: str) -> Path:
        year, month = created_at[:4], created_at[5:7]
        return self.sessions_dir / year / month / f"{session_id}.json"


def transcript_path_for(
    claude_session_id: str, project_path: str | Path, claude_dir: str | Path = "~/.claude"
) -> Path | None:
    candidate = (
        Path(claude_dir).expanduser()
        / "projects"
        / encode_project_path(project_path)
        / f"{claude_session_id}.jsonl"
    )
    return candidate if candidate.exists() else None
