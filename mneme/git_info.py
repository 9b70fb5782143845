from __future__ import annotations

import getpass
import re
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

_REMOTE_RE = re.compile(r"[:/]([^/]+/[^/]+?)(\.git)?$")


@dataclass(frozen=True)
class GitInfo:
    owner: str = "unknown"
    repository: str = ""
    repository_url: str = ""
    repository_root: str = ""
    branch: str | None = None
    user_email: str | None = None


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str:
    try:
        out = subprocess.check_output(cmd, cwd=cwd, stderr=subprocess.DEVNULL, text=True)
        return out.strip()
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return ""


def parse_repository(remote_url: str) -> str:
    match = _REMOTE_RE.search(remote_url.strip())
    if not match:
        return ""
    return match.group(1).removesuffix(".git")


def _os_user() -> str:
    try:
        return getpass.getuser() or "unknown"
    except (KeyError, OSError):
        return "unknown"


def detect_git_info(cwd: str) -> GitInfo:
    owner = run_command(["git", "config", "user.name"], cwd=cwd) or _os_user()
    repository_root = run_command(["git", "rev-parse", "--show-toplevel"], cwd=cwd)
    repository_url = run_command(["git", "remote", "get-url", "origin"], cwd=cwd)
    branch = run_command(["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd) or None
    email = run_command(["git", "config", "user.email"], cwd=cwd) or None
    return GitInfo(
        owner=owner,
        repository=parse_repository(repository_url) if repository_url else "",
        repository_url=repository_url,
        repository_root=repository_root,
        branch=branch,
        user_email=email,
    )
