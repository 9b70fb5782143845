from __future__ import annotations

from typing import Any

import typer
from rich import print

from mneme.config import MnemeConfig, get_config_path, read_config_file, write_config_file
from mneme.links import SessionResolver
from mneme.paths import MnemePaths
from mneme.store import InteractionStore


def store_from_path(db_path: str, config: MnemeConfig) -> InteractionStore:
    return InteractionStore(db_path, busy_timeout_ms=config.busy_timeout_ms)


def paths_or_exit(project: str | None) -> MnemePaths:
    """Project paths for ``project``; exits when ``.mneme`` has not been initialized."""

    paths = MnemePaths.for_project(project)
    if not paths.root.exists():
        print(f"[red]{paths.root} does not exist; run `mneme init` first[/red]")
        raise typer.Exit(code=1)
    return paths


def resolver_for(paths: MnemePaths, config: MnemeConfig) -> SessionResolver:
    return SessionResolver(
        paths,
        max_hops=config.link_max_hops,
        breadcrumb_max_age_seconds=config.breadcrumb_max_age_seconds,
    )


def config_file_or_exit(updates: dict[str, Any] | None = None) -> dict[str, Any]:
    """Stored config values, with ``updates`` merged and written back when given."""

    try:
        data = read_config_file()
    except ValueError as exc:
        print(f"[red]{get_config_path()}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    if not updates:
        return data
    data.update(updates)
    try:
        write_config_file(data)
    except OSError as exc:
        print(f"[red]Could not save {get_config_path()}: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    return data


def truncate(text: str | None, limit: int) -> str:
    if not text:
        return ""
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
