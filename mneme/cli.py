from __future__ import annotations

from typing import List, Optional

import typer

from .commands.common import store_from_path
from .commands.hook_cmds import hook_cmd
from .commands.maintenance_cmds import (
    config_set_cmd,
    config_show_cmd,
    mcp_cmd,
    rebuild_indexes_cmd,
    stats_cmd,
)
from .commands.search_cmds import files_cmd, fuzzy_cmd, rules_cmd, search_cmd
from .commands.session_cmds import (
    cleanup_cmd,
    cleanup_stale_cmd,
    commit_cmd,
    init_cmd,
    recent_cmd,
    save_cmd,
    show_cmd,
    timeline_cmd,
)
from .config import load_config
from .logging_config import configure_logging

app = typer.Typer(help="mneme: local memory for AI pair-programming sessions")
hook_app = typer.Typer(help="Assistant lifecycle hooks (JSON on stdin)")
config_app = typer.Typer(help="Inspect and change configuration")
app.add_typer(hook_app, name="hook")
app.add_typer(config_app, name="config")

PROJECT_HELP = "Project directory (defaults to $MNEME_PROJECT_PATH, then cwd)"


@app.callback()
def main_callback(
    log_json: bool = typer.Option(False, "--log-json", help="Emit JSON log lines on stderr"),
    log_level: Optional[str] = typer.Option(None, help="Override the configured log level"),
) -> None:
    config = load_config()
    configure_logging(log_level or config.log_level, json_output=log_json or config.log_json)


@app.command()
def init(project: str = typer.Option(None, help=PROJECT_HELP)) -> None:
    """Create the .mneme directory tree."""

    init_cmd(project=project)


@app.command()
def save(
    claude_session_id: str = typer.Argument(..., help="Assistant conversation id"),
    session_id: str = typer.Option(None, help="Knowledge session id to save under"),
    transcript: str = typer.Option(None, help="Transcript path (defaults to the assistant's)"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Save a conversation transcript into local.db."""

    save_cmd(
        store_from_path=store_from_path,
        config=load_config(),
        project=project,
        claude_session_id=claude_session_id,
        session_id=session_id,
        transcript=transcript,
    )


@app.command()
def commit(
    claude_session_id: str,
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Mark a conversation as committed so cleanup keeps it."""

    commit_cmd(
        store_from_path=store_from_path,
        config=load_config(),
        project=project,
        claude_session_id=claude_session_id,
    )


@app.command()
def cleanup(
    claude_session_id: str,
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Delete an uncommitted, unsummarized conversation."""

    cleanup_cmd(
        store_from_path=store_from_path,
        config=load_config(),
        project=project,
        claude_session_id=claude_session_id,
    )


@app.command("cleanup-stale")
def cleanup_stale(
    grace_days: Optional[int] = typer.Option(None, help="Override the configured grace period"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Delete uncommitted conversations older than the grace period."""

    cleanup_stale_cmd(
        store_from_path=store_from_path,
        config=load_config(),
        project=project,
        grace_days=grace_days,
    )


@app.command()
def search(
    query: str,
    type_: List[str] = typer.Option(None, "--type", help="session or interaction (repeatable)"),
    limit: Optional[int] = typer.Option(None, help="Maximum results"),
    offset: int = typer.Option(0, help="Results to skip"),
    detail: str = typer.Option("compact", help="compact or summary"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Keyword search over sessions and saved interactions."""

    search_cmd(
        config=load_config(),
        project=project,
        query=query,
        types=type_,
        limit=limit,
        offset=offset,
        detail=detail,
        as_json=as_json,
    )


@app.command()
def rules(
    query: str,
    limit: int = typer.Option(5, help="Maximum results"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Approved rules, decisions and patterns relevant to a query."""

    rules_cmd(project=project, query=query, limit=limit, as_json=as_json)


@app.command()
def fuzzy(
    query: str,
    target: List[str] = typer.Option(None, help="sessions, decisions or patterns (repeatable)"),
    limit: int = typer.Option(20, help="Maximum results"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Typo-tolerant similarity search."""

    fuzzy_cmd(
        config=load_config(),
        project=project,
        query=query,
        targets=target,
        limit=limit,
        as_json=as_json,
    )


@app.command()
def files(
    file_paths: List[str] = typer.Argument(..., help="Project-relative file paths"),
    limit: int = typer.Option(3, help="Maximum sessions"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Sessions that touched the given files."""

    files_cmd(config=load_config(), project=project, file_paths=file_paths, limit=limit)


@app.command()
def show(session_id: str, project: str = typer.Option(None, help=PROJECT_HELP)) -> None:
    """Print a knowledge session as JSON."""

    show_cmd(project=project, session_id=session_id)


@app.command()
def timeline(
    session_id: str,
    chain: bool = typer.Option(True, "--chain/--no-chain", help="Follow resumedFrom links"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """Show a session and the sessions it was resumed from."""

    timeline_cmd(
        config=load_config(), project=project, session_id=session_id, include_chain=chain
    )


@app.command()
def recent(
    limit: int = typer.Option(5, help="Number of sessions"),
    months: Optional[int] = typer.Option(None, help="Months of index to read"),
    project: str = typer.Option(None, help=PROJECT_HELP),
) -> None:
    """List recent sessions from the monthly index."""

    recent_cmd(config=load_config(), project=project, limit=limit, months=months)


@app.command("rebuild-indexes")
def rebuild_indexes(project: str = typer.Option(None, help=PROJECT_HELP)) -> None:
    """Rebuild every monthly session and decision index."""

    rebuild_indexes_cmd(config=load_config(), project=project)


@app.command()
def stats(project: str = typer.Option(None, help=PROJECT_HELP)) -> None:
    """Show document and database counts."""

    stats_cmd(config=load_config(), project=project)


@app.command()
def mcp() -> None:
    """Run the MCP server over stdio."""

    mcp_cmd()


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""

    config_show_cmd()


@config_app.command("set")
def config_set(key: str, value: str) -> None:
    """Persist one configuration value."""

    config_set_cmd(key=key, value=value)


@hook_app.command("session-start")
def hook_session_start() -> None:
    """SessionStart: create or resume the knowledge session."""

    hook_cmd(config=load_config(), event="session-start")


@hook_app.command("session-end")
def hook_session_end() -> None:
    """SessionEnd: final save and cleanup policy."""

    hook_cmd(config=load_config(), event="session-end")


@hook_app.command("pre-compact")
def hook_pre_compact() -> None:
    """PreCompact: back up the transcript and leave a breadcrumb."""

    hook_cmd(config=load_config(), event="pre-compact")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
