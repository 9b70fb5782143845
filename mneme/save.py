"""Persist parsed transcript turns into ``local.db``.

Every save reparses the whole transcript, merges it behind the newest
pre-compaction backup and rewrites the conversation's rows in one transaction.
Repeating a save on an unchanged transcript therefore leaves the same rows.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .db import to_json
from .documents import KnowledgeSession, find_session_file, load_document
from .errors import NotFoundError
from .git_info import GitInfo, detect_git_info
from .links import SessionResolver
from .paths import MnemePaths, transcript_path_for
from .store import FileIndexRow, InteractionRow, InteractionStore
from .transcript import ParsedInteraction, TranscriptParse, parse_transcript
from .utils import short_id

logger = logging.getLogger(__name__)

LOW_WATER_DEFAULT = "1970-01-01T00:00:00Z"

IGNORED_PREFIXES = ("node_modules/", "dist/", ".git/", ".mneme/", ".claude/")
IGNORED_FILES = ("package-lock.json", "pnpm-lock.yaml", "yarn.lock")


def _find_transcript(
    paths: MnemePaths,
    claude_session_id: str,
    transcript_path: Path | str | None,
    claude_dir: str,
) -> Path:
    if transcript_path:
        candidate = Path(transcript_path).expanduser()
        if candidate.is_file():
            return candidate
        raise NotFoundError("transcript", str(candidate))
    found = transcript_path_for(claude_session_id, paths.project_path, claude_dir)
    if found is None:
        raise NotFoundError("transcript", claude_session_id)
    return found


def _read_transcript(path: Path) -> TranscriptParse:
    try:
        return parse_transcript(path)
    except OSError as exc:
        raise NotFoundError("transcript", str(path)) from exc


def _backup_interactions(store: InteractionStore, session_id: str) -> list[ParsedInteraction]:
    backup = store.latest_backup(session_id)
    if backup is None:
        return []
    return [ParsedInteraction.from_dict(item) for item in backup["interactions"]]


def merge_with_backup(
    backup: list[ParsedInteraction], parsed: list[ParsedInteraction]
) -> list[ParsedInteraction]:
    """Backup turns first, then parsed turns strictly newer than the backup."""

    low_water = backup[-1].timestamp if backup else LOW_WATER_DEFAULT
    return [*backup, *(item for item in parsed if item.timestamp > low_water)]


def build_rows(
    interactions: list[ParsedInteraction],
    *,
    session_id: str,
    claude_session_id: str,
    project_path: str,
    git: GitInfo,
) -> list[InteractionRow]:
    rows: list[InteractionRow] = []
    base = {
        "session_id": session_id,
        "claude_session_id": claude_session_id,
        "project_path": project_path,
        "repository": git.repository or None,
        "repository_url": git.repository_url or None,
        "repository_root": git.repository_root or None,
        "owner": git.owner,
    }
    for interaction in interactions:
        rows.append(
            InteractionRow(
                **base,
                role="user",
                content=interaction.user,
                thinking=None,
                tool_calls=_metadata_json(interaction, include_slash_command=True),
                timestamp=interaction.timestamp,
                is_compact_summary=1 if interaction.is_compact_summary else 0,
                agent_id=interaction.agent_id,
                agent_type=interaction.agent_type,
            )
        )
        if not interaction.assistant:
            continue
        rows.append(
            InteractionRow(
                **base,
                role="assistant",
                content=interaction.assistant,
                thinking=interaction.thinking or None,
                tool_calls=_metadata_json(interaction, include_slash_command=False),
                timestamp=interaction.timestamp,
                is_compact_summary=0,
                agent_id=interaction.agent_id,
                agent_type=interaction.agent_type,
            )
        )
    return rows


def _metadata_json(interaction: ParsedInteraction, *, include_slash_command: bool) -> str:
    return to_json(interaction.metadata(include_slash_command=include_slash_command))


def relative_project_file(file_path: str, project_path: str) -> str | None:
    prefix = project_path.rstrip("/") + "/"
    if not file_path.startswith("/") or not file_path.startswith(prefix):
        return None
    relative = file_path[len(prefix) :]
    if not relative:
        return None
    if relative.startswith(IGNORED_PREFIXES) or relative in IGNORED_FILES:
        return None
    return relative


def build_file_index_rows(
    interactions: list[ParsedInteraction], *, session_id: str, project_path: str
) -> list[FileIndexRow]:
    rows: list[FileIndexRow] = []
    for interaction in interactions:
        seen: set[str] = set()
        touched: list[tuple[str, str | None]] = [
            (detail["detail"], detail.get("name"))
            for detail in interaction.tool_details
            if isinstance(detail.get("detail"), str)
        ]
        touched.extend(
            (result.file_path, result.tool_name)
            for result in interaction.tool_results
            if result.file_path
        )
        for file_path, tool_name in touched:
            relative = relative_project_file(file_path, project_path)
            if relative is None or relative in seen:
                continue
            seen.add(relative)
            rows.append(
                FileIndexRow(
                    session_id=session_id,
                    project_path=project_path,
                    file_path=relative,
                    tool_name=tool_name or "",
                    timestamp=interaction.timestamp,
                )
            )
    return rows


def save_interactions(
    store: InteractionStore,
    paths: MnemePaths,
    claude_session_id: str,
    mneme_session_id: str | None = None,
    *,
    transcript_path: Path | str | None = None,
    git: GitInfo | None = None,
    resolver: SessionResolver | None = None,
    claude_dir: str = "~/.claude",
) -> dict[str, Any]:
    """Save every turn of a conversation, merging the pending compaction backup."""

    if not claude_session_id:
        return {
            "success": False,
            "savedCount": 0,
            "mergedFromBackup": 0,
            "message": "claudeSessionId is required",
        }
    try:
        transcript = _find_transcript(paths, claude_session_id, transcript_path, claude_dir)
        parsed = _read_transcript(transcript)
    except NotFoundError as exc:
        return {
            "success": False,
            "savedCount": 0,
            "mergedFromBackup": 0,
            "message": f"Transcript not found: {exc.identifier}",
        }

    resolver = resolver or SessionResolver(paths)
    session_id = mneme_session_id or resolver.knowledge_session_id(claude_session_id)
    project_path = str(paths.project_path)

    backup = _backup_interactions(store, session_id)
    merged = merge_with_backup(backup, parsed.interactions)
    if not merged:
        return {
            "success": True,
            "savedCount": 0,
            "mergedFromBackup": 0,
            "message": "No interactions to save",
        }

    git = git or detect_git_info(project_path)
    rows = build_rows(
        merged,
        session_id=session_id,
        claude_session_id=claude_session_id,
        project_path=project_path,
        git=git,
    )
    saved = store.replace_interactions(claude_session_id, rows)
    store.index_files(
        build_file_index_rows(merged, session_id=session_id, project_path=project_path)
    )
    if backup:
        store.delete_backups(session_id)
    store.upsert_save_state(
        claude_session_id=claude_session_id,
        mneme_session_id=session_id,
        project_path=project_path,
        last_saved_line=parsed.total_lines,
        last_saved_timestamp=merged[-1].timestamp,
    )
    logger.info("saved %d rows for %s into %s", saved, claude_session_id, session_id)
    return {
        "success": True,
        "savedCount": saved,
        "mergedFromBackup": len(backup),
        "message": (
            f"Saved {saved} interactions ({len(merged)} turns, {len(backup)} from backup)"
        ),
    }


def write_pre_compact_backup(
    store: InteractionStore,
    paths: MnemePaths,
    claude_session_id: str,
    transcript_path: Path | str | None = None,
    *,
    git: GitInfo | None = None,
    resolver: SessionResolver | None = None,
    claude_dir: str = "~/.claude",
) -> dict[str, Any]:
    """Snapshot the transcript before compaction and leave a breadcrumb for the next start."""

    resolver = resolver or SessionResolver(paths)
    try:
        transcript = _find_transcript(paths, claude_session_id, transcript_path, claude_dir)
        parsed = _read_transcript(transcript)
    except NotFoundError as exc:
        return {
            "success": False,
            "backedUp": 0,
            "message": f"Transcript not found: {exc.identifier}",
        }
    session_id = resolver.knowledge_session_id(claude_session_id)
    if parsed.interactions:
        store.insert_backup(
            session_id=session_id,
            project_path=str(paths.project_path),
            owner=(git or detect_git_info(str(paths.project_path))).owner,
            interactions=[item.to_dict() for item in parsed.interactions],
        )
    resolver.write_breadcrumb(claude_session_id)
    return {
        "success": True,
        "backedUp": len(parsed.interactions),
        "message": f"Backed up {len(parsed.interactions)} turns for {session_id}",
    }


def mark_committed(
    store: InteractionStore,
    paths: MnemePaths,
    claude_session_id: str,
    *,
    resolver: SessionResolver | None = None,
) -> dict[str, Any]:
    if not claude_session_id:
        return {"success": False, "message": "claudeSessionId is required"}
    resolver = resolver or SessionResolver(paths)
    store.mark_committed(
        claude_session_id,
        mneme_session_id=resolver.knowledge_session_id(claude_session_id),
        project_path=str(paths.project_path),
    )
    return {"success": True, "message": f"Marked {claude_session_id} as committed"}


def session_has_summary(paths: MnemePaths, session_id: str) -> bool:
    path = find_session_file(paths.sessions_dir, session_id)
    if path is None:
        return False
    session = load_document(path, KnowledgeSession)
    return session is not None and session.has_summary


def cleanup_uncommitted(
    store: InteractionStore,
    paths: MnemePaths,
    claude_session_id: str,
    *,
    resolver: SessionResolver | None = None,
) -> dict[str, Any]:
    """Roll back a conversation that was never committed nor summarized."""

    state = store.get_save_state(claude_session_id)
    if state is not None and state["is_committed"] == 1:
        return {"deleted": False, "count": 0}
    resolver = resolver or SessionResolver(paths)
    if session_has_summary(paths, resolver.knowledge_session_id(claude_session_id)):
        return {"deleted": False, "count": 0}
    count = store.delete_interactions(claude_session_id)
    store.delete_save_state(claude_session_id)
    logger.info("removed %d uncommitted rows for %s", count, claude_session_id)
    return {"deleted": True, "count": count}


def cleanup_stale(
    store: InteractionStore,
    paths: MnemePaths,
    grace_days: int,
    *,
    resolver: SessionResolver | None = None,
) -> dict[str, int]:
    resolver = resolver or SessionResolver(paths)
    deleted_sessions = 0
    deleted_interactions = 0
    for row in store.stale_uncommitted(max(1, int(grace_days))):
        claude_session_id = row["claude_session_id"]
        session_id = row["mneme_session_id"]
        if session_has_summary(paths, session_id):
            continue
        deleted_interactions += store.delete_interactions(claude_session_id)
        store.delete_save_state(claude_session_id)
        session_file = find_session_file(paths.sessions_dir, session_id)
        if session_file is not None and session_id == short_id(claude_session_id):
            session_file.unlink(missing_ok=True)
            store.clear_file_index(session_id, str(paths.project_path))
            deleted_sessions += 1
        resolver.remove_link(claude_session_id)
    if deleted_sessions or deleted_interactions:
        logger.info(
            "stale cleanup removed %d sessions and %d interactions",
            deleted_sessions,
            deleted_interactions,
        )
    return {"deletedSessions": deleted_sessions, "deletedInteractions": deleted_interactions}
