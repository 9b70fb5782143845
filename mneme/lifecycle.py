"""Knowledge-session documents across a conversation's start and end."""

from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Any

from .documents import (
    KnowledgeSession,
    SessionContext,
    SessionUser,
    find_session_file,
    load_document,
    write_document,
)
from .git_info import GitInfo, detect_git_info
from .links import SessionResolver
from .paths import MnemePaths
from .save import cleanup_stale, cleanup_uncommitted, save_interactions
from .store import InteractionStore
from .utils import now_iso, short_id

logger = logging.getLogger(__name__)

RULE_FILES = ("dev-rules.json", "review-guidelines.json")


def init_project(paths: MnemePaths) -> list[Path]:
    """Create the ``.mneme`` tree; existing files are left alone."""

    created: list[Path] = []
    for directory in (
        paths.sessions_dir,
        paths.links_dir,
        paths.decisions_dir,
        paths.patterns_dir,
        paths.rules_dir,
    ):
        if not directory.exists():
            directory.mkdir(parents=True)
            created.append(directory)
    if not paths.tags_path.exists():
        created.append(write_document(paths.tags_path, {"version": 1, "tags": []}))
    for name in RULE_FILES:
        rule_path = paths.rules_dir / name
        if not rule_path.exists():
            created.append(write_document(rule_path, {"version": 1, "items": []}))
    return created


def _new_session(
    paths: MnemePaths, claude_session_id: str, created_at: str, git: GitInfo
) -> KnowledgeSession:
    user = SessionUser(name=git.owner)
    if git.user_email:
        user.email = git.user_email
    context = SessionContext(
        project_dir=str(paths.project_path),
        project_name=paths.project_path.name,
    )
    if git.branch:
        context.branch = git.branch
    if git.repository:
        context.repository = git.repository
    context.user = user
    return KnowledgeSession(
        id=short_id(claude_session_id),
        session_id=claude_session_id,
        created_at=created_at,
        title="",
        tags=[],
        context=context,
        status=None,
    )


def start_session(
    paths: MnemePaths,
    claude_session_id: str,
    *,
    git: GitInfo | None = None,
    resolver: SessionResolver | None = None,
    now: dt.datetime | None = None,
) -> dict[str, Any]:
    resolver = resolver or SessionResolver(paths)
    timestamp = now_iso(now)
    resolver.consume_breadcrumb(claude_session_id, now=now)

    session_id = short_id(claude_session_id)
    existing = find_session_file(paths.sessions_dir, session_id)
    session = load_document(existing, KnowledgeSession) if existing else None
    if existing is not None and session is not None:
        session.status = None
        session.resumed_at = timestamp
        write_document(existing, session)
        path = existing
        resumed = True
        logger.info("session %s resumed", session_id)
    else:
        session = _new_session(
            paths,
            claude_session_id,
            timestamp,
            git or detect_git_info(str(paths.project_path)),
        )
        path = write_document(paths.session_path_for(session_id, timestamp), session)
        resumed = False
        logger.info("session %s initialized at %s", session_id, path)

    master = resolver.knowledge_session_id(claude_session_id)
    if master != session_id:
        resolver.open_work_period(master, claude_session_id, now=timestamp)
    return {
        "sessionId": session_id,
        "resumed": resumed,
        "masterSessionId": master,
        "path": str(path),
    }


def _cleanup_after(grace_days: int, now: dt.datetime) -> str:
    return now_iso(now + dt.timedelta(days=grace_days))


def finalize_session(
    store: InteractionStore,
    paths: MnemePaths,
    claude_session_id: str,
    *,
    transcript_path: Path | str | None = None,
    policy: str = "grace",
    grace_days: int = 7,
    resolver: SessionResolver | None = None,
    git: GitInfo | None = None,
    now: dt.datetime | None = None,
) -> dict[str, Any]:
    if not paths.root.exists():
        return {"status": "skipped"}
    resolver = resolver or SessionResolver(paths)
    moment = now or dt.datetime.now(dt.UTC)
    timestamp = now_iso(moment)
    master = resolver.knowledge_session_id(claude_session_id)

    session_path = find_session_file(paths.sessions_dir, short_id(claude_session_id))
    if session_path is None:
        session_path = find_session_file(paths.sessions_dir, master)

    if transcript_path is not None:
        result = save_interactions(
            store,
            paths,
            claude_session_id,
            transcript_path=transcript_path,
            git=git,
            resolver=resolver,
        )
        if not result["success"]:
            logger.warning("final save for %s failed: %s", claude_session_id, result["message"])

    session = load_document(session_path, KnowledgeSession) if session_path else None
    if session_path is None or session is None:
        logger.info("session %s ended without a session document", claude_session_id)
    elif session.has_summary:
        _mark_complete(session_path, session, timestamp)
    else:
        session.status = "uncommitted"
        session.ended_at = timestamp
        session.updated_at = timestamp
        session.uncommitted = {
            "endedAt": timestamp,
            "policy": policy,
            "cleanupAfter": None if policy == "immediate" else _cleanup_after(grace_days, moment),
        }
        _write_session(session_path, session)
        if policy == "immediate":
            cleanup = cleanup_uncommitted(store, paths, claude_session_id, resolver=resolver)
            if cleanup["deleted"]:
                session_path.unlink(missing_ok=True)
                resolver.remove_link(claude_session_id)
                logger.info(
                    "session %s ended unsaved, removed %d interactions",
                    claude_session_id,
                    cleanup["count"],
                )
            else:
                _mark_complete(session_path, session, timestamp)

    outcome: dict[str, Any] = {"status": "ok"}
    if policy == "grace":
        cleaned = cleanup_stale(store, paths, grace_days, resolver=resolver)
        if cleaned["deletedSessions"] or cleaned["deletedInteractions"]:
            outcome["graceCleanup"] = cleaned

    if master != short_id(claude_session_id):
        resolver.close_work_period(master, claude_session_id, now=timestamp)
    return outcome


def _write_session(path: Path, session: KnowledgeSession, *, drop: tuple[str, ...] = ()) -> None:
    data = session.to_json_dict()
    for key in ("interactions", "preCompactBackups", *drop):
        data.pop(key, None)
    write_document(path, data)


def _mark_complete(path: Path, session: KnowledgeSession, timestamp: str) -> None:
    session.status = "complete"
    session.ended_at = timestamp
    session.updated_at = timestamp
    _write_session(path, session, drop=("uncommitted",))
