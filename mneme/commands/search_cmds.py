from __future__ import annotations

import json
from typing import Any

import typer
from rich import print, print_json
from rich.markup import escape

from mneme.config import MnemeConfig
from mneme.search import (
    SEARCH_TYPES,
    fuzzy_search,
    search_approved_rules,
    search_by_files,
    search_knowledge,
)
from mneme.store import open_existing_store

from .common import paths_or_exit, truncate


def _print_results(results: list[dict[str, Any]], *, as_json: bool) -> None:
    if as_json:
        print_json(json.dumps(results, ensure_ascii=False))
        return
    if not results:
        print("No results")
        return
    for item in results:
        kind = item.get("type") or item.get("sourceType") or "?"
        title = escape(item.get("title") or item.get("id") or "")
        print(f"{kind:<11} {item['id']}  {title}  score={float(item['score']):.2f}")
        snippet = item.get("snippet") or item.get("text")
        if snippet:
            print(f"            {escape(truncate(snippet, 120))}")


def search_cmd(
    *,
    config: MnemeConfig,
    project: str | None,
    query: str,
    types: list[str] | None,
    limit: int | None,
    offset: int,
    detail: str,
    as_json: bool,
) -> None:
    """Keyword search over sessions and saved interactions."""

    if not query.strip():
        print("[red]Query must not be empty[/red]")
        raise typer.Exit(code=1)
    unknown = [t for t in types or [] if t not in SEARCH_TYPES]
    if unknown:
        print(f"[red]Unknown search type: {', '.join(unknown)}[/red]")
        raise typer.Exit(code=1)
    paths = paths_or_exit(project)
    with open_existing_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
        results = search_knowledge(
            query,
            paths,
            store,
            types=types or SEARCH_TYPES,
            limit=config.search_default_limit if limit is None else limit,
            offset=offset,
            detail="summary" if detail == "summary" else "compact",
        )
    _print_results(results, as_json=as_json)


def rules_cmd(*, project: str | None, query: str, limit: int, as_json: bool) -> None:
    """Approved rules, decisions and patterns relevant to a query."""

    paths = paths_or_exit(project)
    _print_results(search_approved_rules(query, paths, limit=limit), as_json=as_json)


def fuzzy_cmd(
    *,
    config: MnemeConfig,
    project: str | None,
    query: str,
    targets: list[str] | None,
    limit: int,
    as_json: bool,
) -> None:
    """Similarity search tolerant of typos."""

    allowed = ("sessions", "decisions", "patterns")
    unknown = [t for t in targets or [] if t not in allowed]
    if unknown:
        print(f"[red]Unknown target: {', '.join(unknown)}[/red]")
        raise typer.Exit(code=1)
    paths = paths_or_exit(project)
    results = fuzzy_search(
        query,
        paths,
        targets=targets or ("sessions", "decisions"),  # type: ignore[arg-type]
        limit=limit,
        timeout_ms=config.search_timeout_ms,
    )
    _print_results(results, as_json=as_json)


def files_cmd(
    *, config: MnemeConfig, project: str | None, file_paths: list[str], limit: int
) -> None:
    """Sessions that touched the given project files."""

    paths = paths_or_exit(project)
    with open_existing_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
        if store is None:
            print("[yellow]local.db not found; no file history yet[/yellow]")
            return
        results = search_by_files(store, paths, file_paths, limit=limit)
    if not results:
        print("No sessions touched these files")
        return
    for item in results:
        files = ", ".join(item["matchedFiles"])
        print(f"{item['sessionId']}  {escape(item['title'])}  ({escape(files)})")
