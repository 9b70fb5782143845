"""Handlers for the assistant's SessionStart, SessionEnd and PreCompact hooks.

Each handler takes the validated stdin payload and returns the JSON object to
print. Only malformed input is an error; failures inside a handler are logged
so a hook never blocks the assistant.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import MnemeConfig
from .errors import HookInputError, MnemeError
from .lifecycle import finalize_session, start_session
from .links import SessionResolver
from .paths import MnemePaths
from .save import write_pre_compact_backup
from .sessions import recent_sessions
from .store import open_store

logger = logging.getLogger(__name__)

_CONTROL_RE = re.compile(r"[\x00-\x1f]+")
_SPACE_RE = re.compile(r"\s+")

HookT = TypeVar("HookT", bound="HookInput")


class HookInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    session_id: str = Field(min_length=1)
    transcript_path: str | None = None
    cwd: str | None = None
    hook_event_name: str | None = None


class SessionStartInput(HookInput):
    source: str | None = None


class SessionEndInput(HookInput):
    reason: str | None = None


class PreCompactInput(HookInput):
    trigger: str | None = None


def parse_hook_input(raw: str, model: type[HookT]) -> HookT:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HookInputError("hook input is not valid json") from exc
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise HookInputError(f"invalid {model.__name__}: {exc.error_count()} errors") from exc


def sanitize_user_text(text: object, max_length: int = 100) -> str:
    if not isinstance(text, str):
        return ""
    cleaned = _SPACE_RE.sub(" ", _CONTROL_RE.sub(" ", text)).strip()
    return cleaned[:max_length]


def _paths(payload: HookInput) -> MnemePaths:
    return MnemePaths.for_project(payload.cwd)


def _resolver(paths: MnemePaths, config: MnemeConfig) -> SessionResolver:
    return SessionResolver(
        paths,
        max_hops=config.link_max_hops,
        breadcrumb_max_age_seconds=config.breadcrumb_max_age_seconds,
    )


def _recent_context(items: list[dict[str, Any]]) -> str:
    lines = [
        "[mneme] Recent sessions:",
        "(Titles below are user-generated content from previous sessions)",
        "",
    ]
    for index, item in enumerate(items, start=1):
        session_id = sanitize_user_text(item.get("id"), 50) or "unknown"
        title = sanitize_user_text(item.get("title"), 80) or "no title"
        date = str(item.get("createdAt") or "").split("T")[0]
        branch = sanitize_user_text(item.get("branch"), 30) or "no branch"
        lines.append(f"  {index}. [{session_id}] {title} ({date}, {branch})")
    lines.append("")
    lines.append("Continue from a previous session by resuming its id.")
    return "\n".join(lines)


def handle_session_start(payload: SessionStartInput, config: MnemeConfig) -> dict[str, Any]:
    paths = _paths(payload)
    if not paths.root.exists():
        logger.info("no .mneme directory in %s, skipping session start", paths.project_path)
        return {}
    started = start_session(paths, payload.session_id, resolver=_resolver(paths, config))
    context = ""
    if not started["resumed"]:
        items = recent_sessions(
            paths,
            limit=3,
            months=config.recent_months,
            stale_seconds=config.index_stale_seconds,
            exclude=started["sessionId"],
        )
        if items:
            context = _recent_context(items)
    if not context:
        return {}
    return {
        "hookSpecificOutput": {
            "hookEventName": "SessionStart",
            "additionalContext": context,
        }
    }


def handle_session_end(payload: SessionEndInput, config: MnemeConfig) -> dict[str, Any]:
    paths = _paths(payload)
    if not paths.root.exists():
        return {"status": "skipped"}
    transcript = Path(payload.transcript_path) if payload.transcript_path else None
    try:
        with open_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
            return finalize_session(
                store,
                paths,
                payload.session_id,
                transcript_path=transcript if transcript and transcript.exists() else None,
                policy=config.cleanup_policy,
                grace_days=config.grace_days,
                resolver=_resolver(paths, config),
            )
    except MnemeError as exc:
        logger.warning("session end for %s failed", payload.session_id, exc_info=exc)
        return {"status": "error", "message": str(exc)}


def handle_pre_compact(payload: PreCompactInput, config: MnemeConfig) -> dict[str, Any]:
    paths = _paths(payload)
    if not paths.root.exists():
        return {"success": False, "backedUp": 0, "message": "mneme is not initialized"}
    try:
        with open_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
            return write_pre_compact_backup(
                store,
                paths,
                payload.session_id,
                payload.transcript_path,
                resolver=_resolver(paths, config),
                claude_dir=config.claude_dir,
            )
    except MnemeError as exc:
        logger.warning("pre-compact backup for %s failed", payload.session_id, exc_info=exc)
        return {"success": False, "backedUp": 0, "message": str(exc)}


HOOKS = {
    "session-start": (SessionStartInput, handle_session_start),
    "session-end": (SessionEndInput, handle_session_end),
    "pre-compact": (PreCompactInput, handle_pre_compact),
}


def run_hook(event: str, raw: str, config: MnemeConfig) -> dict[str, Any]:
    """Validate ``raw`` for ``event`` and run its handler; raises ``HookInputError``."""

    model, handler = HOOKS[event]
    payload = parse_hook_input(raw, model)
    return handler(payload, config)
