from __future__ import annotations

import logging
from typing import Any

from .documents import KnowledgeSession, find_session_file, load_document, load_sessions_by_id
from .errors import NotFoundError
from .indexes import INDEX_KINDS, IndexManager
from .paths import MnemePaths
from .store import InteractionStore
from .utils import short_id

logger = logging.getLogger(__name__)

MAX_CHAIN_HOPS = 30


def get_session(paths: MnemePaths, session_id: str) -> dict[str, Any] | None:
    path = find_session_file(paths.sessions_dir, session_id)
    if path is None and short_id(session_id) != session_id:
        path = find_session_file(paths.sessions_dir, short_id(session_id))
    if path is None:
        return None
    session = load_document(path, KnowledgeSession)
    return session.to_json_dict() if session else None


def session_timeline(
    paths: MnemePaths,
    store: InteractionStore | None,
    session_id: str,
    *,
    include_chain: bool = True,
    max_hops: int = MAX_CHAIN_HOPS,
) -> dict[str, Any]:
    """Walk ``resumedFrom`` back from a session; raises ``NotFoundError``."""

    sessions = load_sessions_by_id(paths.sessions_dir)
    root_id = short_id(session_id)
    root = sessions.get(root_id)
    if root is None:
        raise NotFoundError("session", root_id)

    chain = [root_id]
    if include_chain:
        visited = {root_id}
        current: KnowledgeSession | None = root
        while current is not None and current.resumed_from and len(chain) <= max_hops:
            previous = current.resumed_from
            if previous in visited:
                logger.warning("resume chain loops back to %s", previous)
                break
            visited.add(previous)
            chain.append(previous)
            current = sessions.get(previous)

    timeline = []
    for chain_id in chain:
        session = sessions.get(chain_id)
        timeline.append(
            {
                "id": chain_id,
                "title": session.title if session else None,
                "createdAt": session.created_at if session else None,
                "endedAt": session.ended_at if session else None,
                "resumedFrom": session.resumed_from if session else None,
                "interactionCount": (
                    store.count_interactions(session_id=chain_id) if store is not None else 0
                ),
            }
        )
    return {
        "rootSessionId": root_id,
        "dbAvailable": store is not None,
        "chainLength": len(timeline),
        "timeline": timeline,
    }


def rebuild_indexes(paths: MnemePaths, *, stale_seconds: int = 300) -> dict[str, dict[str, int]]:
    manager = IndexManager(paths, stale_seconds=stale_seconds)
    return {kind: manager.rebuild_all(kind) for kind in INDEX_KINDS}


def recent_sessions(
    paths: MnemePaths,
    *,
    limit: int = 3,
    months: int = 6,
    stale_seconds: int = 300,
    exclude: str | None = None,
) -> list[dict[str, Any]]:
    manager = IndexManager(paths, stale_seconds=stale_seconds)
    shard = manager.read_recent("sessions", months)
    items = [item for item in shard.items if item.id != exclude]
    return [item.to_json_dict() for item in items[: max(limit, 0)]]
