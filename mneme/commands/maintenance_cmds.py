from __future__ import annotations

import dataclasses

import typer
from rich import print
from rich.markup import escape

from mneme.config import CLEANUP_POLICIES, MnemeConfig, get_config_path, load_config
from mneme.documents import walk_json_files
from mneme.sessions import rebuild_indexes
from mneme.store import open_existing_store

from .common import config_file_or_exit, paths_or_exit


def rebuild_indexes_cmd(*, config: MnemeConfig, project: str | None) -> None:
    """Rebuild every monthly session and decision index."""

    paths = paths_or_exit(project)
    result = rebuild_indexes(paths, stale_seconds=config.index_stale_seconds)
    for kind, counts in result.items():
        print(f"- {kind}: {counts['items']} items in {counts['months']} months")


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    return f"{size / 1024 / 1024 / 1024:.1f} GB"


def stats_cmd(*, config: MnemeConfig, project: str | None) -> None:
    paths = paths_or_exit(project)

    print("[bold]Documents[/bold]")
    print(f"- Root: {paths.root}")
    print(f"- Sessions: {sum(1 for _ in walk_json_files(paths.sessions_dir))}")
    print(f"- Decisions: {sum(1 for _ in walk_json_files(paths.decisions_dir))}")
    print(f"- Links: {sum(1 for _ in walk_json_files(paths.links_dir))}")

    print("\n[bold]Database[/bold]")
    with open_existing_store(paths.db_path, busy_timeout_ms=config.busy_timeout_ms) as store:
        if store is None:
            print("- local.db not created yet")
            return
        db_stats = store.stats()
    print(f"- Path: {db_stats['path']}")
    print(f"- Size: {_format_bytes(int(db_stats['size_bytes']))}")
    print(f"- Interactions: {db_stats['interactions']}")
    print(f"- Pending backups: {db_stats['backups']}")
    print(
        f"- Conversations: {db_stats['tracked_conversations']} "
        f"(committed {db_stats['committed_conversations']})"
    )
    print(f"- Indexed file touches: {db_stats['indexed_files']}")


def mcp_cmd() -> None:
    """Run the MCP server over stdio."""

    from mneme.mcp_server import run as mcp_run

    mcp_run()


def config_show_cmd() -> None:
    """Print the effective configuration."""

    config_file_or_exit()
    config = load_config()
    print(f"[bold]Config file[/bold] {get_config_path()}")
    for key, value in dataclasses.asdict(config).items():
        print(f"- {key}: {escape(str(value))}")


def config_set_cmd(*, key: str, value: str) -> None:
    """Persist one configuration value."""

    fields = {field.name: field for field in dataclasses.fields(MnemeConfig)}
    if key not in fields:
        print(f"[red]Unknown config key: {escape(key)}[/red]")
        raise typer.Exit(code=1)
    if key == "cleanup_policy" and value not in CLEANUP_POLICIES:
        print(f"[red]cleanup_policy must be one of {', '.join(CLEANUP_POLICIES)}[/red]")
        raise typer.Exit(code=1)
    parsed: object = value
    if fields[key].type == "int":
        try:
            parsed = int(value)
        except ValueError as exc:
            print(f"[red]{key} must be an integer[/red]")
            raise typer.Exit(code=1) from exc
    elif fields[key].type == "bool":
        parsed = value.lower() in {"1", "true", "yes", "on"}
    config_file_or_exit({key: parsed})
    print(f"Set {key} = {escape(str(parsed))}")
