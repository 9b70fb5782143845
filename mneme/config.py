from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/mneme/config.json").expanduser()
ENV_PREFIX = "MNEME_"

CLEANUP_POLICIES = ("immediate", "grace", "never")

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})


@dataclass
class MnemeConfig:
    claude_dir: str = "~/.claude"
    # What SessionEnd does with sessions that were never saved with a summary.
    cleanup_policy: str = "grace"
    grace_days: int = 7
    index_stale_seconds: int = 300
    breadcrumb_max_age_seconds: int = 300
    recent_months: int = 6
    link_max_hops: int = 30
    busy_timeout_ms: int = 5000
    search_timeout_ms: int = 10000
    search_default_limit: int = 10
    log_level: str = "WARNING"
    log_json: bool = False


# Every field can be overridden by MNEME_<FIELD>.
CONFIG_ENV_OVERRIDES = {f.name: f"{ENV_PREFIX}{f.name.upper()}" for f in fields(MnemeConfig)}


def get_config_path(path: Path | None = None) -> Path:
    if path is not None:
        return path.expanduser()
    return Path(os.environ.get("MNEME_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    """Strict read used by the ``config`` commands; raises ``ValueError`` on bad JSON."""

    target = get_config_path(path)
    if not target.exists():
        return {}
    text = target.read_text().strip()
    if not text:
        return {}
    try:
        loaded = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(loaded, dict):
        raise ValueError("config must be an object")
    return loaded


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    target = get_config_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n")
    return target


def get_env_overrides() -> dict[str, str]:
    return {
        key: os.environ[env_var]
        for key, env_var in CONFIG_ENV_OVERRIDES.items()
        if env_var in os.environ
    }


def _warn_invalid(key: str, kind: str, value: object) -> None:
    warnings.warn(f"Invalid {kind} for {key}: {value!r}", RuntimeWarning, stacklevel=4)


def _as_bool(key: str, value: object, current: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        return current
    _warn_invalid(key, "bool", value)
    return current


def _as_int(key: str, value: object, current: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        _warn_invalid(key, "int", value)
        return current
    try:
        return int(value)
    except ValueError:
        _warn_invalid(key, "int", value)
        return current


def _as_policy(value: object, current: str) -> str:
    policy = value.strip().lower() if isinstance(value, str) else None
    if policy in CLEANUP_POLICIES:
        return policy
    warnings.warn(f"Invalid cleanup_policy: {value!r}", RuntimeWarning, stacklevel=3)
    return current


def _merge(cfg: MnemeConfig, values: dict[str, Any]) -> None:
    """Coerce each known key to its field's type; unknown keys are ignored."""

    defaults = {f.name: f.default for f in fields(MnemeConfig)}
    for key, value in values.items():
        if key not in defaults or value is None:
            continue
        current = getattr(cfg, key)
        if key == "cleanup_policy":
            cfg.cleanup_policy = _as_policy(value, current)
        elif isinstance(defaults[key], bool):
            setattr(cfg, key, _as_bool(key, value, current))
        elif isinstance(defaults[key], int):
            setattr(cfg, key, _as_int(key, value, current))
        elif isinstance(value, str):
            setattr(cfg, key, value)


def load_config(path: Path | None = None) -> MnemeConfig:
    """Defaults, then the config file, then ``MNEME_*`` environment variables."""

    cfg = MnemeConfig()
    target = get_config_path(path)
    if target.exists():
        try:
            data = json.loads(target.read_text() or "{}")
        except json.JSONDecodeError:
            warnings.warn(
                f"Invalid config file {target}; using defaults", RuntimeWarning, stacklevel=2
            )
            data = {}
        if isinstance(data, dict):
            _merge(cfg, data)
    _merge(cfg, get_env_overrides())
    return cfg
