from __future__ import annotations

import json
import logging
import sys

LOG_PREFIX = "[mneme]"


class StructuredFormatter(logging.Formatter):
    """JSON log lines for machine consumers of hook output."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "WARNING", *, json_output: bool = False) -> None:
    root = logging.getLogger("mneme")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(f"{LOG_PREFIX} %(levelname)s %(message)s"))
    root.addHandler(handler)
    resolved = logging.getLevelName(level.upper()) if level else logging.WARNING
    root.setLevel(resolved if isinstance(resolved, int) else logging.WARNING)
    root.propagate = False
