from __future__ import annotations

from collections.abc import Sequence
from typing import Any

try:
    from mcp.server.fastmcp import FastMCP
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "mcp package is required for the MCP server. Install with `pip install -e .`"
    ) from exc

from .config import MnemeConfig, load_config
from .errors import NotFoundError
from .links import SessionResolver
from .logging_config import configure_logging
from .paths import MnemePaths
from .save import mark_committed, save_interactions
from .search import SEARCH_TYPES, search_approved_rules, search_knowledge
from .sessions import get_session, rebuild_indexes, session_timeline
from .store import open_existing_store, open_store

SEARCH_LIMIT_MAX = 100


def search_tool(
    paths: MnemePaths,
    config: MnemeConfig,
    query: str,
    types: Sequence[str] | None = None,
    limit: int | None = None,
    offset: int = 0,
    detail: str = "compact",
) -> dict[str, Any]:
    query = query.strip()
    if not query:
        return {"error": "query must not be empty"}
    limit = config.search_default_limit if limit is None else limit
    if not 1 <= limit <= SEARCH_LIMIT_MAX:
        return {"error": f"limit must be between 1 and {SEARCH_LIMIT_MAX}"}
    offset = max(0, offset)
    wanted = [t for t in (types or SEARCH_TYPES) if t in SEARCH_TYPES]
    with open_existing_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
        fetched = search_knowledge(
            query,
            paths,
            store,
            types=wanted,
            limit=limit + 1,
            offset=offset,
            detail="summary" if detail == "summary" else "compact",
        )
    items = fetched[:limit]
    has_more = len(fetched) > limit
    return {
        "items": items,
        "page": {
            "limit": limit,
            "offset": offset,
            "returned": len(items),
            "hasMore": has_more,
            "nextOffset": offset + len(items) if has_more else None,
        },
    }


def timeline_tool(
    paths: MnemePaths, config: MnemeConfig, session_id: str, include_chain: bool = True
) -> dict[str, Any]:
    with open_existing_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
        try:
            return session_timeline(
                paths,
                store,
                session_id,
                include_chain=include_chain,
                max_hops=config.link_max_hops,
            )
        except NotFoundError as exc:
            return {"error": "not_found", "message": str(exc)}


def build_server(project_path: str | None = None, config: MnemeConfig | None = None) -> FastMCP:
    mcp = FastMCP("mneme")
    paths = MnemePaths.for_project(project_path)
    cfg = config or load_config()

    def resolver() -> SessionResolver:
        return SessionResolver(
            paths,
            max_hops=cfg.link_max_hops,
            breadcrumb_max_age_seconds=cfg.breadcrumb_max_age_seconds,
        )

    @mcp.tool()
    def mneme_search(
        query: str,
        types: list[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
        detail: str = "compact",
    ) -> dict[str, Any]:
        """Search sessions and saved interactions; types are session and interaction."""

        return search_tool(paths, cfg, query, types, limit, offset, detail)

    @mcp.tool()
    def mneme_get_session(session_id: str) -> dict[str, Any]:
        """Return one knowledge-session document by short or full id."""

        session = get_session(paths, session_id)
        if session is None:
            return {"error": "not_found", "sessionId": session_id}
        return session

    @mcp.tool()
    def mneme_mark_session_committed(claude_session_id: str) -> dict[str, Any]:
        """Protect a conversation's interactions from cleanup at session end."""

        if not claude_session_id.strip():
            return {"error": "claude_session_id must not be empty"}
        with open_store(paths.db_path, busy_timeout_ms=cfg.busy_timeout_ms) as store:
            result = mark_committed(store, paths, claude_session_id, resolver=resolver())
        return {"success": result["success"], "claudeSessionId": claude_session_id}

    @mcp.tool()
    def mneme_session_timeline(session_id: str, include_chain: bool = True) -> dict[str, Any]:
        """Timeline of a session and the sessions it was resumed from."""

        return timeline_tool(paths, cfg, session_id, include_chain)

    @mcp.tool()
    def mneme_rebuild_indexes() -> dict[str, Any]:
        """Rebuild every monthly session and decision index."""

        return rebuild_indexes(paths, stale_seconds=cfg.index_stale_seconds)

    @mcp.tool()
    def mneme_save_interactions(
        claude_session_id: str, mneme_session_id: str | None = None
    ) -> dict[str, Any]:
        """Save the conversation transcript into the local interaction store."""

        with open_store(paths.db_path, busy_timeout_ms=cfg.busy_timeout_ms) as store:
            return save_interactions(
                store,
                paths,
                claude_session_id,
                mneme_session_id,
                resolver=resolver(),
                claude_dir=cfg.claude_dir,
            )

    @mcp.tool()
    def mneme_search_approved_rules(query: str, limit: int = 5) -> dict[str, Any]:
        """Approved rules, decisions and patterns relevant to a query."""

        if not query.strip():
            return {"error": "query must not be empty"}
        return {"items": search_approved_rules(query, paths, limit=max(1, limit))}

    @mcp.tool()
    def mneme_get_interactions(
        session_id: str, limit: int = 50, offset: int = 0
    ) -> dict[str, Any]:
        """Stored interactions of a knowledge session in timestamp order."""

        with open_existing_store(paths.db_path, busy_timeout_ms=cfg.busy_timeout_ms) as store:
            if store is None:
                return {"error": "not_found", "message": "local.db does not exist"}
            items = store.get_interactions(session_id, limit=limit, offset=offset)
        return {"sessionId": session_id, "items": items}

    return mcp


def run() -> None:
    config = load_config()
    configure_logging(config.log_level, json_output=config.log_json)
    build_server(config=config).run()


if __name__ == "__main__":
    run()
