"""Validated views over the JSON documents kept under ``.mneme``.

Every document is read through :func:`load_document`. A file that is missing,
is not JSON, or does not match its model is reported as absent; callers never
see a partially trusted dict.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class Document(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)

    @model_validator(mode="before")
    @classmethod
    def _null_lists_as_empty(cls, data: Any) -> Any:
        # An explicit null on a list field reads as an empty list.
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for name, info in cls.model_fields.items():
            if info.default_factory is not list:
                continue
            for key in {name, info.alias or to_camel(name)}:
                if key in cleaned and cleaned[key] is None:
                    cleaned[key] = []
        return cleaned

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


class SessionUser(Document):
    name: str | None = None
    email: str | None = None


class SessionContext(Document):
    project_dir: str | None = None
    project_name: str | None = None
    branch: str | None = None
    repository: str | None = None
    user: SessionUser | str | None = None


class SessionSummary(Document):
    title: str | None = None
    goal: str | None = None
    description: str | None = None
    session_type: str | None = None


class Discussion(Document):
    topic: str | None = None
    decision: str | None = None
    reasoning: str | None = None


class ErrorRecord(Document):
    error: str | None = None
    cause: str | None = None
    solution: str | None = None


class WorkPeriod(Document):
    claude_session_id: str | None = None
    conversation_id: str | None = None
    started_at: str | None = None
    ended_at: str | None = None

    @property
    def conversation(self) -> str | None:
        return self.claude_session_id or self.conversation_id


class KnowledgeSession(Document):
    id: str = Field(min_length=1)
    session_id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    ended_at: str | None = None
    resumed_at: str | None = None
    resumed_from: str | None = None
    title: str | None = None
    goal: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: str | None = None
    session_type: str | None = None
    context: SessionContext | None = None
    summary: SessionSummary | str | None = None
    discussions: list[Discussion] = Field(default_factory=list)
    errors: list[ErrorRecord] = Field(default_factory=list)
    work_periods: list[WorkPeriod] | None = None
    uncommitted: dict[str, Any] | None = None
    interactions: list[Any] = Field(default_factory=list)

    @property
    def has_summary(self) -> bool:
        if self.summary is None:
            return False
        if isinstance(self.summary, str):
            return bool(self.summary.strip())
        return any(
            bool(value)
            for value in self.summary.model_dump(exclude_none=True).values()
        )

    @property
    def summary_fields(self) -> SessionSummary:
        if isinstance(self.summary, SessionSummary):
            return self.summary
        return SessionSummary()

    @property
    def display_title(self) -> str:
        return self.title or self.summary_fields.title or ""


class SessionLink(Document):
    master_session_id: str = Field(min_length=1)
    claude_session_id: str | None = None
    linked_at: str | None = None


class CompactBreadcrumb(Document):
    claude_session_id: str = Field(min_length=1)
    created_at: str


class TagDefinition(Document):
    id: str
    label: str = ""
    aliases: list[str] = Field(default_factory=list)

    def terms(self) -> list[str]:
        return [term.lower() for term in (self.id, self.label, *self.aliases) if term]


class TagsFile(Document):
    tags: list[TagDefinition] = Field(default_factory=list)


class DecisionDocument(Document):
    id: str | None = None
    title: str | None = None
    decision: str | None = None
    reasoning: str | None = None
    status: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    user: SessionUser | str | None = None


class RuleItem(Document):
    id: str | None = None
    key: str | None = None
    text: str | None = None
    status: str | None = None
    priority: str | None = None
    tags: list[str] = Field(default_factory=list)


class RulesFile(Document):
    items: list[RuleItem] | None = None
    rules: list[RuleItem] | None = None

    @property
    def entries(self) -> list[RuleItem]:
        return self.items or self.rules or []


class PatternItem(Document):
    id: str | None = None
    type: str | None = None
    title: str | None = None
    pattern: str | None = None
    description: str | None = None
    error_pattern: str | None = None
    example: str | None = None
    suggestion: str | None = None
    status: str | None = None
    tags: list[str] = Field(default_factory=list)


class PatternsFile(Document):
    items: list[PatternItem] | None = None
    patterns: list[PatternItem] | None = None

    @property
    def entries(self) -> list[PatternItem]:
        return self.items or self.patterns or []


class SessionIndexItem(Document):
    id: str
    title: str
    goal: str | None = None
    created_at: str
    tags: list[str] = Field(default_factory=list)
    session_type: str | None = None
    branch: str | None = None
    user: str | None = None
    interaction_count: int = 0
    file_path: str
    has_summary: bool = False


class DecisionIndexItem(Document):
    id: str
    title: str
    created_at: str
    updated_at: str | None = None
    tags: list[str] = Field(default_factory=list)
    status: str = "active"
    user: str | None = None
    file_path: str


class SessionIndex(Document):
    version: int = 1
    updated_at: str = ""
    items: list[SessionIndexItem] = Field(default_factory=list)


class DecisionIndex(Document):
    version: int = 1
    updated_at: str = ""
    items: list[DecisionIndexItem] = Field(default_factory=list)


def read_json(path: Path) -> Any | None:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("unreadable document %s", path, exc_info=exc)
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("skipping malformed json document %s", path)
        return None


def load_document(path: Path, model: type[ModelT]) -> ModelT | None:
    data = read_json(path)
    if data is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "skipping invalid %s document %s (%d errors)",
            model.__name__,
            path,
            exc.error_count(),
        )
        return None


def write_document(path: Path, document: BaseModel | dict[str, Any]) -> Path:
    if isinstance(document, Document):
        payload: Any = document.to_json_dict()
    elif isinstance(document, BaseModel):
        payload = document.model_dump(mode="json")
    else:
        payload = document
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
            handle.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


def walk_json_files(directory: Path) -> Iterator[Path]:
    if not directory.is_dir():
        return
    for entry in sorted(directory.iterdir()):
        if entry.is_dir():
            yield from walk_json_files(entry)
        elif entry.is_file() and entry.suffix == ".json":
            yield entry


def find_session_file(sessions_dir: Path, session_id: str) -> Path | None:
    if not session_id:
        return None
    target = f"{session_id}.json"
    for path in walk_json_files(sessions_dir):
        if path.name == target:
            return path
    return None


def load_sessions_by_id(sessions_dir: Path) -> dict[str, KnowledgeSession]:
    sessions: dict[str, KnowledgeSession] = {}
    for path in walk_json_files(sessions_dir):
        session = load_document(path, KnowledgeSession)
        if session is not None and session.id not in sessions:
            sessions[session.id] = session
    return sessions


def load_tags(tags_path: Path) -> TagsFile | None:
    return load_document(tags_path, TagsFile)
