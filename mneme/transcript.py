"""Parse assistant JSONL transcripts into per-turn interactions.

A turn pairs one real user prompt with every assistant fragment whose
timestamp falls in ``[prompt.timestamp, next_prompt.timestamp)``. Prompts with
no assistant fragment in their window produce no interaction.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

END_OF_TIME = "9999-12-31T23:59:59Z"
SYNTHETIC_USER_PREFIXES = ("<local-command-stdout>", "<local-command-caveat>")
PLAN_MODE_ENTER = "EnterPlanMode"
PLAN_MODE_EXIT = "ExitPlanMode"

_SLASH_COMMAND_RE = re.compile(r"<command-name>([^<]+)</command-name>")
_RESULT_PATH_RE = re.compile(r"(?:^|\s)((?:/|\./)\S+\.\w+)\b")


@dataclass
class ToolResultMeta:
    tool_use_id: str
    tool_name: str | None
    success: bool
    content_length: int
    line_count: int | None = None
    file_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "toolUseId": self.tool_use_id,
            "toolName": self.tool_name,
            "success": self.success,
            "contentLength": self.content_length,
        }
        if self.line_count is not None:
            data["lineCount"] = self.line_count
        if self.file_path is not None:
            data["filePath"] = self.file_path
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolResultMeta:
        return cls(
            tool_use_id=str(data.get("toolUseId") or ""),
            tool_name=data.get("toolName"),
            success=bool(data.get("success", True)),
            content_length=int(data.get("contentLength") or 0),
            line_count=data.get("lineCount"),
            file_path=data.get("filePath"),
        )


@dataclass
class ParsedInteraction:
    timestamp: str
    user: str
    assistant: str = ""
    thinking: str = ""
    is_compact_summary: bool = False
    tools_used: list[str] = field(default_factory=list)
    tool_details: list[dict[str, Any]] = field(default_factory=list)
    in_plan_mode: bool = False
    slash_command: str | None = None
    tool_results: list[ToolResultMeta] = field(default_factory=list)
    progress_events: list[dict[str, Any]] = field(default_factory=list)
    agent_id: str | None = None
    agent_type: str | None = None

    def metadata(self, *, include_slash_command: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "toolsUsed": list(self.tools_used),
            "toolDetails": list(self.tool_details),
        }
        if self.in_plan_mode:
            data["inPlanMode"] = True
        if include_slash_command and self.slash_command:
            data["slashCommand"] = self.slash_command
        if self.tool_results:
            data["toolResults"] = [result.to_dict() for result in self.tool_results]
        if self.progress_events:
            data["progressEvents"] = list(self.progress_events)
        return data

    def to_dict(self) -> dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "user": self.user,
            "assistant": self.assistant,
            "thinking": self.thinking,
            "isCompactSummary": self.is_compact_summary,
        }
        data.update(self.metadata())
        if self.agent_id:
            data["agentId"] = self.agent_id
        if self.agent_type:
            data["agentType"] = self.agent_type
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParsedInteraction:
        return cls(
            timestamp=str(data.get("timestamp") or ""),
            user=str(data.get("user") or ""),
            assistant=str(data.get("assistant") or ""),
            thinking=str(data.get("thinking") or ""),
            is_compact_summary=bool(data.get("isCompactSummary")),
            tools_used=list(data.get("toolsUsed") or []),
            tool_details=list(data.get("toolDetails") or []),
            in_plan_mode=bool(data.get("inPlanMode")),
            slash_command=data.get("slashCommand"),
            tool_results=[
                ToolResultMeta.from_dict(item)
                for item in data.get("toolResults") or []
                if isinstance(item, dict)
            ],
            progress_events=list(data.get("progressEvents") or []),
            agent_id=data.get("agentId"),
            agent_type=data.get("agentType"),
        )


@dataclass
class TranscriptParse:
    interactions: list[ParsedInteraction]
    total_lines: int
    invalid_lines: int = 0


@dataclass
class _UserPrompt:
    timestamp: str
    content: str
    is_compact_summary: bool
    slash_command: str | None
    agent_id: str | None


@dataclass
class _AssistantFragment:
    timestamp: str
    thinking: str
    text: str
    tool_details: list[dict[str, Any]]


def extract_slash_command(content: str) -> str | None:
    match = _SLASH_COMMAND_RE.search(content)
    return match.group(1) if match else None


def _content_parts(entry: dict[str, Any]) -> list[dict[str, Any]] | None:
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None
    return [part for part in content if isinstance(part, dict)]


def _timestamp(entry: dict[str, Any]) -> str:
    value = entry.get("timestamp")
    return value if isinstance(value, str) else ""


def _tool_detail(name: str, tool_input: Any) -> Any:
    if not isinstance(tool_input, dict):
        return None
    if name == "Bash":
        return tool_input.get("command")
    if name in {"Read", "Edit", "Write"}:
        return tool_input.get("file_path")
    if name in {"Glob", "Grep"}:
        return tool_input.get("pattern")
    return None


def _plan_mode_events(entries: Iterable[dict[str, Any]]) -> list[tuple[str, bool]]:
    events: list[tuple[str, bool]] = []
    for entry in entries:
        if entry.get("type") != "assistant":
            continue
        for part in _content_parts(entry) or []:
            if part.get("type") != "tool_use":
                continue
            if part.get("name") == PLAN_MODE_ENTER:
                events.append((_timestamp(entry), True))
            elif part.get("name") == PLAN_MODE_EXIT:
                events.append((_timestamp(entry), False))
    return events


def _in_plan_mode(events: list[tuple[str, bool]], timestamp: str) -> bool:
    active = False
    for event_ts, entering in events:
        if event_ts > timestamp:
            break
        active = entering
    return active


def _progress_by_minute(entries: Iterable[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    buckets: dict[str, list[dict[str, Any]]] = {}
    for entry in entries:
        if entry.get("type") != "progress":
            continue
        data = entry.get("data")
        if not isinstance(data, dict) or not data.get("type"):
            continue
        if data["type"] == "hook_progress":
            continue
        timestamp = _timestamp(entry)
        event: dict[str, Any] = {
            "type": data["type"],
            "timestamp": timestamp,
            "hookEvent": data.get("hookEvent"),
            "hookName": data.get("hookName"),
            "toolName": data.get("toolName"),
        }
        if data["type"] == "agent_progress":
            event["prompt"] = data.get("prompt")
            event["agentId"] = data.get("agentId")
        buckets.setdefault(timestamp[:16], []).append(event)
    return buckets


def _tool_use_maps(
    entries: Iterable[dict[str, Any]],
) -> tuple[dict[str, str], dict[str, str]]:
    names: dict[str, str] = {}
    file_paths: dict[str, str] = {}
    for entry in entries:
        if entry.get("type") != "assistant":
            continue
        for part in _content_parts(entry) or []:
            if part.get("type") != "tool_use" or not part.get("id") or not part.get("name"):
                continue
            names[part["id"]] = part["name"]
            tool_input = part.get("input")
            if isinstance(tool_input, dict) and isinstance(tool_input.get("file_path"), str):
                file_paths[part["id"]] = tool_input["file_path"]
    return names, file_paths


def _tool_results_by_minute(
    entries: Iterable[dict[str, Any]],
    names: dict[str, str],
    file_paths: dict[str, str],
) -> dict[str, list[ToolResultMeta]]:
    buckets: dict[str, list[ToolResultMeta]] = {}
    for entry in entries:
        if entry.get("type") != "user":
            continue
        results: list[ToolResultMeta] = []
        for part in _content_parts(entry) or []:
            if part.get("type") != "tool_result" or not part.get("tool_use_id"):
                continue
            raw = part.get("content")
            if isinstance(raw, str):
                text = raw
            elif raw:
                text = json.dumps(raw, ensure_ascii=False)
            else:
                text = ""
            tool_use_id = str(part["tool_use_id"])
            file_path = file_paths.get(tool_use_id)
            if not file_path:
                match = _RESULT_PATH_RE.search(text)
                file_path = match.group(1) if match else None
            line_count = len(text.split("\n"))
            results.append(
                ToolResultMeta(
                    tool_use_id=tool_use_id,
                    tool_name=names.get(tool_use_id),
                    success=not part.get("is_error"),
                    content_length=len(text),
                    line_count=line_count if line_count > 1 else None,
                    file_path=file_path,
                )
            )
        if results:
            buckets.setdefault(_timestamp(entry)[:16], []).extend(results)
    return buckets


def _user_prompts(entries: Iterable[dict[str, Any]]) -> list[_UserPrompt]:
    prompts: list[_UserPrompt] = []
    for entry in entries:
        if entry.get("type") != "user" or entry.get("isMeta") is True:
            continue
        message = entry.get("message")
        if not isinstance(message, dict) or message.get("role") != "user":
            continue
        content = message.get("content")
        if not isinstance(content, str):
            continue
        if content.startswith(SYNTHETIC_USER_PREFIXES):
            continue
        agent_id = entry.get("agentId")
        prompts.append(
            _UserPrompt(
                timestamp=_timestamp(entry),
                content=content,
                is_compact_summary=bool(entry.get("isCompactSummary")),
                slash_command=extract_slash_command(content),
                agent_id=agent_id if isinstance(agent_id, str) else None,
            )
        )
    return prompts


def _assistant_fragments(entries: Iterable[dict[str, Any]]) -> list[_AssistantFragment]:
    fragments: list[_AssistantFragment] = []
    for entry in entries:
        if entry.get("type") != "assistant":
            continue
        parts = _content_parts(entry)
        if parts is None:
            continue
        thinking = "\n".join(
            str(p["thinking"]) for p in parts if p.get("type") == "thinking" and p.get("thinking")
        )
        text = "\n".join(
            str(p["text"]) for p in parts if p.get("type") == "text" and p.get("text")
        )
        tool_details = [
            {"name": p["name"], "detail": _tool_detail(p["name"], p.get("input"))}
            for p in parts
            if p.get("type") == "tool_use" and p.get("name")
        ]
        if not thinking and not text and not tool_details:
            continue
        fragments.append(
            _AssistantFragment(
                timestamp=_timestamp(entry),
                thinking=thinking,
                text=text,
                tool_details=tool_details,
            )
        )
    return fragments


def read_entries(path: Path, *, skip_lines: int = 0) -> tuple[list[dict[str, Any]], int, int]:
    """Read JSONL entries, returning ``(entries, total_lines, invalid_lines)``.

    Raises ``FileNotFoundError``/``OSError`` when the transcript cannot be read.
    """

    entries: list[dict[str, Any]] = []
    total = 0
    invalid = 0
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            total += 1
            if total <= skip_lines or not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                invalid += 1
                continue
            if not isinstance(entry, dict):
                invalid += 1
                continue
            entries.append(entry)
    return entries, total, invalid


def build_interactions(entries: list[dict[str, Any]]) -> list[ParsedInteraction]:
    plan_events = _plan_mode_events(entries)
    progress = _progress_by_minute(entries)
    names, file_paths = _tool_use_maps(entries)
    tool_results = _tool_results_by_minute(entries, names, file_paths)
    prompts = _user_prompts(entries)
    fragments = _assistant_fragments(entries)

    interactions: list[ParsedInteraction] = []
    for index, prompt in enumerate(prompts):
        window_end = prompts[index + 1].timestamp if index + 1 < len(prompts) else END_OF_TIME
        responses = [f for f in fragments if prompt.timestamp <= f.timestamp < window_end]
        if not responses:
            continue
        details = [detail for response in responses for detail in response.tool_details]
        minute = prompt.timestamp[:16]
        interactions.append(
            ParsedInteraction(
                timestamp=prompt.timestamp,
                user=prompt.content,
                assistant="\n".join(r.text for r in responses if r.text),
                thinking="\n".join(r.thinking for r in responses if r.thinking),
                is_compact_summary=prompt.is_compact_summary,
                tools_used=list(dict.fromkeys(detail["name"] for detail in details)),
                tool_details=details,
                in_plan_mode=_in_plan_mode(plan_events, prompt.timestamp),
                slash_command=prompt.slash_command,
                tool_results=list(tool_results.get(minute, [])),
                progress_events=list(progress.get(minute, [])),
                agent_id=prompt.agent_id,
            )
        )
    return interactions


def parse_transcript(path: Path | str, last_saved_line: int = 0) -> TranscriptParse:
    transcript = Path(path)
    entries, total, invalid = read_entries(transcript, skip_lines=last_saved_line)
    if invalid:
        logger.warning("skipped %d unparseable lines in %s", invalid, transcript)
    return TranscriptParse(
        interactions=build_interactions(entries),
        total_lines=total,
        invalid_lines=invalid,
    )
