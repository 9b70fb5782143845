from __future__ import annotations

import json

import typer
from rich import print, print_json
from rich.markup import escape

from mneme.config import MnemeConfig
from mneme.errors import MnemeError, NotFoundError
from mneme.lifecycle import init_project
from mneme.paths import MnemePaths
from mneme.save import cleanup_stale, cleanup_uncommitted, mark_committed, save_interactions
from mneme.sessions import get_session, recent_sessions, session_timeline
from mneme.store import open_existing_store

from .common import paths_or_exit, resolver_for


def init_cmd(*, project: str | None) -> None:
    """Create the .mneme tree for a project."""

    paths = MnemePaths.for_project(project)
    created = init_project(paths)
    if not created:
        print(f"{paths.root} already initialized")
        return
    print(f"[green]Initialized {paths.root}[/green] ({len(created)} entries created)")


def save_cmd(
    *,
    store_from_path,
    config: MnemeConfig,
    project: str | None,
    claude_session_id: str,
    session_id: str | None,
    transcript: str | None,
) -> None:
    """Save a conversation transcript into local.db."""

    paths = paths_or_exit(project)
    store = store_from_path(str(paths.db_path), config)
    try:
        result = save_interactions(
            store,
            paths,
            claude_session_id,
            session_id,
            transcript_path=transcript,
            resolver=resolver_for(paths, config),
            claude_dir=config.claude_dir,
        )
    except MnemeError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    if not result["success"]:
        print(f"[red]{escape(result['message'])}[/red]")
        raise typer.Exit(code=1)
    print(escape(result["message"]))


def commit_cmd(
    *, store_from_path, config: MnemeConfig, project: str | None, claude_session_id: str
) -> None:
    """Protect a conversation from uncommitted cleanup."""

    paths = paths_or_exit(project)
    store = store_from_path(str(paths.db_path), config)
    try:
        result = mark_committed(
            store, paths, claude_session_id, resolver=resolver_for(paths, config)
        )
    except MnemeError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    if not result["success"]:
        print(f"[red]{escape(result['message'])}[/red]")
        raise typer.Exit(code=1)
    print(escape(result["message"]))


def cleanup_cmd(
    *, store_from_path, config: MnemeConfig, project: str | None, claude_session_id: str
) -> None:
    """Delete a conversation's rows unless it is committed or summarized."""

    paths = paths_or_exit(project)
    store = store_from_path(str(paths.db_path), config)
    try:
        result = cleanup_uncommitted(
            store, paths, claude_session_id, resolver=resolver_for(paths, config)
        )
    except MnemeError as exc:
        print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
    if result["deleted"]:
        print(f"Deleted {result['count']} interactions for {escape(claude_session_id)}")
    else:
        print(f"[yellow]Kept {escape(claude_session_id)} (committed or summarized)[/yellow]")


def cleanup_stale_cmd(
    *, store_from_path, config: MnemeConfig, project: str | None, grace_days: int | None
) -> None:
    """Delete uncommitted conversations older than the grace period."""

    paths = paths_or_exit(project)
    store = store_from_path(str(paths.db_path), config)
    try:
        result = cleanup_stale(
            store,
            paths,
            config.grace_days if grace_days is None else grace_days,
            resolver=resolver_for(paths, config),
        )
    finally:
        store.close()
    print(
        f"Removed {result['deletedSessions']} sessions and "
        f"{result['deletedInteractions']} interactions"
    )


def show_cmd(*, project: str | None, session_id: str) -> None:
    """Print a knowledge session as JSON."""

    paths = paths_or_exit(project)
    session = get_session(paths, session_id)
    if session is None:
        print(f"[red]Session {escape(session_id)} not found[/red]")
        raise typer.Exit(code=1)
    print_json(json.dumps(session, ensure_ascii=False))


def timeline_cmd(
    *, config: MnemeConfig, project: str | None, session_id: str, include_chain: bool
) -> None:
    """Print the resume chain of a session."""

    paths = paths_or_exit(project)
    with open_existing_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
        try:
            result = session_timeline(
                paths,
                store,
                session_id,
                include_chain=include_chain,
                max_hops=config.link_max_hops,
            )
        except NotFoundError as exc:
            print(f"[red]{escape(str(exc))}[/red]")
            raise typer.Exit(code=1) from exc
    for entry in result["timeline"]:
        created = (entry["createdAt"] or "").split("T")[0]
        title = escape(entry["title"] or "(untitled)")
        print(f"{entry['id']}  {created}  {title}  ({entry['interactionCount']} interactions)")
    if not result["dbAvailable"]:
        print("[yellow]local.db not found; interaction counts unavailable[/yellow]")


def recent_cmd(*, config: MnemeConfig, project: str | None, limit: int, months: int | None) -> None:
    """List the most recent sessions from the monthly index."""

    paths = paths_or_exit(project)
    items = recent_sessions(
        paths,
        limit=limit,
        months=config.recent_months if months is None else months,
        stale_seconds=config.index_stale_seconds,
    )
    if not items:
        print("No sessions found")
        return
    for item in items:
        created = str(item.get("createdAt") or "").split("T")[0]
        branch = item.get("branch") or "-"
        marker = "" if item.get("hasSummary") else " [dim](no summary)[/dim]"
        print(f"{item['id']}  {created}  {escape(str(branch))}  {escape(item['title'])}{marker}")
