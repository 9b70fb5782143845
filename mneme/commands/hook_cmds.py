from __future__ import annotations

import json
import sys

import typer

from mneme.config import MnemeConfig
from mneme.errors import HookInputError
from mneme.hooks import run_hook


def hook_cmd(*, config: MnemeConfig, event: str) -> None:
    """Run one hook handler on the JSON payload read from stdin.

    The result goes to stdout as a single JSON line; malformed input exits 1.
    """

    raw = sys.stdin.read()
    try:
        result = run_hook(event, raw, config)
    except HookInputError as exc:
        typer.echo(f"[mneme] {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(json.dumps(result, ensure_ascii=False))
