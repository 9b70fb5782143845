"""Monthly summary shards under ``.indexes/<kind>/<year>/<month>.json``.

Shards are derived caches. A shard that is missing, unreadable or older than
the staleness window is rebuilt from the source documents before it is used.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from pathlib import Path
from typing import Literal

from .documents import (
    DecisionDocument,
    DecisionIndex,
    DecisionIndexItem,
    KnowledgeSession,
    SessionIndex,
    SessionIndexItem,
    SessionUser,
    load_document,
    write_document,
)
from .paths import MnemePaths
from .utils import now_iso, parse_iso8601

logger = logging.getLogger(__name__)

IndexKind = Literal["sessions", "decisions"]
Shard = SessionIndex | DecisionIndex

INDEX_KINDS: tuple[IndexKind, ...] = ("sessions", "decisions")
DEFAULT_STALE_SECONDS = 300
DEFAULT_RECENT_MONTHS = 6

_YEAR_RE = re.compile(r"^\d{4}$")
_MONTH_RE = re.compile(r"^\d{2}$")
_EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.UTC)


def _created_key(created_at: str) -> dt.datetime:
    return parse_iso8601(created_at) or _EPOCH


def _user_name(user: SessionUser | str | None) -> str | None:
    if isinstance(user, SessionUser):
        return user.name
    return None


def session_index_item(session: KnowledgeSession, relative_path: str) -> SessionIndexItem | None:
    if not session.created_at:
        return None
    summary = session.summary_fields
    title = summary.title or session.title or ""
    context = session.context
    return SessionIndexItem(
        id=session.id,
        title=title or "Untitled",
        goal=summary.goal or session.goal or None,
        created_at=session.created_at,
        tags=list(session.tags),
        session_type=session.session_type or summary.session_type or None,
        branch=context.branch if context else None,
        user=_user_name(context.user) if context else None,
        interaction_count=len(session.interactions),
        file_path=relative_path,
        has_summary=bool(title) and title != "Untitled",
    )


def decision_index_item(
    decision: DecisionDocument, relative_path: str
) -> DecisionIndexItem | None:
    if not decision.id or not decision.created_at:
        return None
    return DecisionIndexItem(
        id=decision.id,
        title=decision.title or "Untitled",
        created_at=decision.created_at,
        updated_at=decision.updated_at,
        tags=list(decision.tags),
        status=decision.status or "active",
        user=_user_name(decision.user),
        file_path=relative_path,
    )


class IndexManager:
    def __init__(
        self,
        paths: MnemePaths,
        *,
        stale_seconds: int = DEFAULT_STALE_SECONDS,
    ) -> None:
        self.paths = paths
        self.stale_seconds = stale_seconds

    def source_dir(self, kind: IndexKind) -> Path:
        return self.paths.sessions_dir if kind == "sessions" else self.paths.decisions_dir

    def shard_path(self, kind: IndexKind, year: str, month: str) -> Path:
        return self.paths.indexes_dir / kind / year / f"{month}.json"

    def year_months(self, kind: IndexKind) -> list[tuple[str, str]]:
        """Source ``(year, month)`` directories, most recent first."""

        source = self.source_dir(kind)
        if not source.is_dir():
            return []
        found: list[tuple[str, str]] = []
        for year_dir in source.iterdir():
            if not year_dir.is_dir() or not _YEAR_RE.match(year_dir.name):
                continue
            for month_dir in year_dir.iterdir():
                if month_dir.is_dir() and _MONTH_RE.match(month_dir.name):
                    found.append((year_dir.name, month_dir.name))
        found.sort(reverse=True)
        return found

    def _empty(self, kind: IndexKind) -> Shard:
        return SessionIndex() if kind == "sessions" else DecisionIndex()

    def read(self, kind: IndexKind, year: str, month: str) -> Shard | None:
        model = SessionIndex if kind == "sessions" else DecisionIndex
        return load_document(self.shard_path(kind, year, month), model)

    def write(self, kind: IndexKind, year: str, month: str, shard: Shard) -> Path:
        return write_document(self.shard_path(kind, year, month), shard)

    def build(self, kind: IndexKind, year: str, month: str) -> Shard:
        source = self.source_dir(kind)
        month_dir = source / year / month
        files = (
            sorted(p for p in month_dir.iterdir() if p.is_file() and p.suffix == ".json")
            if month_dir.is_dir()
            else []
        )
        if kind == "sessions":
            session_items: list[SessionIndexItem] = []
            for path in files:
                session = load_document(path, KnowledgeSession)
                if session is None:
                    continue
                item = session_index_item(session, path.relative_to(source).as_posix())
                if item is not None:
                    session_items.append(item)
            session_items.sort(key=lambda i: _created_key(i.created_at), reverse=True)
            return SessionIndex(version=1, updated_at=now_iso(), items=session_items)

        decision_items: list[DecisionIndexItem] = []
        for path in files:
            decision = load_document(path, DecisionDocument)
            if decision is None:
                continue
            entry = decision_index_item(decision, path.relative_to(source).as_posix())
            if entry is not None:
                decision_items.append(entry)
        decision_items.sort(key=lambda i: _created_key(i.created_at), reverse=True)
        return DecisionIndex(version=1, updated_at=now_iso(), items=decision_items)

    def rebuild(self, kind: IndexKind, year: str, month: str) -> Shard:
        shard = self.build(kind, year, month)
        if shard.items:
            self.write(kind, year, month, shard)
        else:
            self.shard_path(kind, year, month).unlink(missing_ok=True)
        return shard

    def rebuild_all(self, kind: IndexKind) -> dict[str, int]:
        items = 0
        months = 0
        for year, month in self.year_months(kind):
            shard = self.rebuild(kind, year, month)
            if shard.items:
                items += len(shard.items)
                months += 1
        logger.info("rebuilt %s indexes: %d items across %d months", kind, items, months)
        return {"items": items, "months": months}

    def is_stale(self, shard: Shard | None, *, now: dt.datetime | None = None) -> bool:
        if shard is None or not shard.updated_at:
            return True
        updated = parse_iso8601(shard.updated_at)
        if updated is None:
            return True
        moment = now or dt.datetime.now(dt.UTC)
        return (moment - updated).total_seconds() > self.stale_seconds

    def read_recent(
        self,
        kind: IndexKind,
        month_count: int | None = DEFAULT_RECENT_MONTHS,
        *,
        now: dt.datetime | None = None,
    ) -> Shard:
        months = self.year_months(kind)
        if month_count is not None:
            months = months[: max(month_count, 0)]
        merged = self._empty(kind)
        latest = ""
        for year, month in months:
            shard = self.read(kind, year, month)
            if shard is None or self.is_stale(shard, now=now):
                shard = self.rebuild(kind, year, month)
            if not shard.items:
                continue
            merged.items.extend(shard.items)  # type: ignore[arg-type]
            latest = max(latest, shard.updated_at)
        merged.items.sort(key=lambda i: _created_key(i.created_at), reverse=True)
        merged.updated_at = latest or now_iso()
        return merged

    def read_all(self, kind: IndexKind, *, now: dt.datetime | None = None) -> Shard:
        return self.read_recent(kind, None, now=now)
