"""Map transient conversation ids to durable knowledge-session ids.

Link files form an adjacency map ``conversation id -> master id``. Walks over
that map are bounded by a hop limit and a visited set, so a cyclic set of link
files resolves to some id instead of looping.
"""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path

from .documents import (
    CompactBreadcrumb,
    KnowledgeSession,
    SessionLink,
    WorkPeriod,
    find_session_file,
    load_document,
    write_document,
)
from .paths import MnemePaths
from .utils import now_iso, parse_iso8601, short_id

logger = logging.getLogger(__name__)

DEFAULT_MAX_HOPS = 30
DEFAULT_BREADCRUMB_MAX_AGE_SECONDS = 300


class SessionResolver:
    def __init__(
        self,
        paths: MnemePaths,
        *,
        max_hops: int = DEFAULT_MAX_HOPS,
        breadcrumb_max_age_seconds: int = DEFAULT_BREADCRUMB_MAX_AGE_SECONDS,
    ) -> None:
        self.paths = paths
        self.max_hops = max_hops
        self.breadcrumb_max_age_seconds = breadcrumb_max_age_seconds

    def read_link(self, conversation_id: str) -> SessionLink | None:
        if not conversation_id:
            return None
        candidates = [conversation_id]
        if short_id(conversation_id) != conversation_id:
            candidates.append(short_id(conversation_id))
        for candidate in candidates:
            link = load_document(self.paths.link_path(candidate), SessionLink)
            if link is not None:
                return link
        return None

    def next_hop(self, session_id: str) -> str | None:
        link = self.read_link(session_id)
        if link is None or link.master_session_id == session_id:
            return None
        return link.master_session_id

    def resolve(self, conversation_id: str) -> str:
        link = self.read_link(conversation_id)
        return link.master_session_id if link else conversation_id

    def knowledge_session_id(self, claude_session_id: str) -> str:
        """Durable id for a conversation: its master when linked, else its short id."""

        link = self.read_link(claude_session_id)
        return link.master_session_id if link else short_id(claude_session_id)

    def walk_to_master(self, session_id: str) -> str:
        current = session_id
        visited = {current}
        for _ in range(self.max_hops):
            nxt = self.next_hop(current)
            if nxt is None:
                return current
            if nxt in visited:
                logger.warning("session link cycle detected at %s -> %s", current, nxt)
                return current
            visited.add(nxt)
            current = nxt
        logger.warning("session link chain from %s exceeded %d hops", session_id, self.max_hops)
        return current

    def write_link(self, conversation_id: str, master_session_id: str) -> SessionLink:
        link = SessionLink(
            master_session_id=master_session_id,
            claude_session_id=conversation_id,
            linked_at=now_iso(),
        )
        write_document(self.paths.link_path(short_id(conversation_id)), link)
        return link

    def remove_link(self, conversation_id: str) -> bool:
        removed = False
        for candidate in {conversation_id, short_id(conversation_id)}:
            path = self.paths.link_path(candidate)
            if path.exists():
                path.unlink()
                removed = True
        return removed

    # compaction breadcrumb

    def write_breadcrumb(self, claude_session_id: str, *, now: dt.datetime | None = None) -> Path:
        crumb = CompactBreadcrumb(claude_session_id=claude_session_id, created_at=now_iso(now))
        return write_document(self.paths.breadcrumb_path, crumb)

    def _discard_breadcrumb(self) -> None:
        self.paths.breadcrumb_path.unlink(missing_ok=True)

    def consume_breadcrumb(
        self, current_id: str, *, now: dt.datetime | None = None
    ) -> SessionLink | None:
        """Link ``current_id`` to the master of the conversation that was compacted."""

        if not self.paths.breadcrumb_path.exists():
            return None
        crumb = load_document(self.paths.breadcrumb_path, CompactBreadcrumb)
        if crumb is None:
            self._discard_breadcrumb()
            return None
        created = parse_iso8601(crumb.created_at)
        moment = now or dt.datetime.now(dt.UTC)
        if created is None or (moment - created).total_seconds() > self.breadcrumb_max_age_seconds:
            logger.info("discarding stale compaction breadcrumb for %s", crumb.claude_session_id)
            self._discard_breadcrumb()
            return None
        if crumb.claude_session_id == current_id:
            self._discard_breadcrumb()
            return None

        master = self.walk_to_master(crumb.claude_session_id)
        if master == crumb.claude_session_id:
            master = short_id(master)
        if master == short_id(current_id):
            self._discard_breadcrumb()
            return None
        link = self.write_link(current_id, master)
        self._discard_breadcrumb()
        logger.info("linked conversation %s to master session %s", current_id, master)
        return link

    # master work periods

    def _load_master(self, master_session_id: str) -> tuple[Path, KnowledgeSession] | None:
        path = find_session_file(self.paths.sessions_dir, master_session_id)
        if path is None:
            return None
        master = load_document(path, KnowledgeSession)
        if master is None:
            return None
        return path, master

    def open_work_period(
        self, master_session_id: str, conversation_id: str, *, now: str | None = None
    ) -> bool:
        loaded = self._load_master(master_session_id)
        if loaded is None:
            return False
        path, master = loaded
        periods = list(master.work_periods or [])
        if any(p.conversation == conversation_id and p.ended_at is None for p in periods):
            return False
        timestamp = now or now_iso()
        periods.append(
            WorkPeriod(claude_session_id=conversation_id, started_at=timestamp, ended_at=None)
        )
        master.work_periods = periods
        master.updated_at = timestamp
        write_document(path, master)
        return True

    def close_work_period(
        self, master_session_id: str, conversation_id: str, *, now: str | None = None
    ) -> bool:
        loaded = self._load_master(master_session_id)
        if loaded is None:
            return False
        path, master = loaded
        if not master.work_periods:
            return False
        timestamp = now or now_iso()
        changed = False
        for period in master.work_periods:
            if period.conversation == conversation_id and period.ended_at is None:
                period.ended_at = timestamp
                changed = True
        if changed:
            master.updated_at = timestamp
            write_document(path, master)
        return changed
