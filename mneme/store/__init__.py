from __future__ import annotations

from ._store import InteractionStore, open_existing_store, open_store
from .types import FileIndexRow, InteractionHit, InteractionRow, PreCompactBackup, SaveState

__all__ = [
    "FileIndexRow",
    "InteractionHit",
    "InteractionRow",
    "InteractionStore",
    "PreCompactBackup",
    "SaveState",
    "open_existing_store",
    "open_store",
]
