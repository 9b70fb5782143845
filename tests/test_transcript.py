from __future__ import annotations

from pathlib import Path

import pytest

from mneme.transcript import ParsedInteraction, extract_slash_command, parse_transcript


def test_pairs_prompts_with_fragments_in_their_window(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "Explain the cache")
        .assistant("2026-01-15T10:00:01.000Z", thinking="Look at cache.py")
        .assistant(
            "2026-01-15T10:00:02.000Z",
            "The cache is an LRU.",
            tools=[("Read", {"file_path": "/repo/cache.py"}), ("Bash", {"command": "ls"})],
        )
        .user("2026-01-15T10:03:00.000Z", "Thanks")
        .assistant("2026-01-15T10:03:01.000Z", "You're welcome.")
        .write(tmp_path / "t.jsonl")
    )

    parsed = parse_transcript(path)

    assert parsed.total_lines == 5
    assert parsed.invalid_lines == 0
    assert [i.user for i in parsed.interactions] == ["Explain the cache", "Thanks"]
    first = parsed.interactions[0]
    assert first.assistant == "The cache is an LRU."
    assert first.thinking == "Look at cache.py"
    assert first.tools_used == ["Read", "Bash"]
    assert first.tool_details == [
        {"name": "Read", "detail": "/repo/cache.py"},
        {"name": "Bash", "detail": "ls"},
    ]
    assert parsed.interactions[1].assistant == "You're welcome."


def test_unanswered_prompt_produces_no_interaction(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "first")
        .user("2026-01-15T10:01:00.000Z", "second")
        .assistant("2026-01-15T10:01:02.000Z", "answer to second")
        .write(tmp_path / "t.jsonl")
    )

    parsed = parse_transcript(path)

    assert [i.user for i in parsed.interactions] == ["second"]


def test_meta_and_synthetic_user_entries_are_not_prompts(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "real prompt")
        .user("2026-01-15T10:00:01.000Z", "injected", isMeta=True)
        .user("2026-01-15T10:00:02.000Z", "<local-command-stdout>ok</local-command-stdout>")
        .assistant("2026-01-15T10:00:03.000Z", "reply")
        .write(tmp_path / "t.jsonl")
    )

    parsed = parse_transcript(path)

    assert len(parsed.interactions) == 1
    assert parsed.interactions[0].user == "real prompt"
    assert parsed.interactions[0].assistant == "reply"


def test_invalid_lines_are_counted_and_skipped(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "hello")
        .raw("{not json")
        .raw("[1, 2]")
        .assistant("2026-01-15T10:00:01.000Z", "hi")
        .write(tmp_path / "t.jsonl")
    )

    parsed = parse_transcript(path)

    assert parsed.total_lines == 4
    assert parsed.invalid_lines == 2
    assert len(parsed.interactions) == 1


def test_last_saved_line_skips_already_seen_lines(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "old")
        .assistant("2026-01-15T10:00:01.000Z", "old answer")
        .user("2026-01-15T10:02:00.000Z", "new")
        .assistant("2026-01-15T10:02:01.000Z", "new answer")
        .write(tmp_path / "t.jsonl")
    )

    parsed = parse_transcript(path, last_saved_line=2)

    assert parsed.total_lines == 4
    assert [i.user for i in parsed.interactions] == ["new"]


def test_missing_transcript_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        parse_transcript(tmp_path / "absent.jsonl")


def test_slash_command_and_compact_summary_flags(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user(
            "2026-01-15T10:00:00.000Z",
            "<command-name>/review</command-name> please",
            isCompactSummary=True,
        )
        .assistant("2026-01-15T10:00:01.000Z", "reviewing")
        .write(tmp_path / "t.jsonl")
    )

    interaction = parse_transcript(path).interactions[0]

    assert interaction.slash_command == "/review"
    assert interaction.is_compact_summary is True
    assert extract_slash_command("no command here") is None


def test_plan_mode_follows_enter_and_exit_events(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "plan it")
        .assistant("2026-01-15T10:00:01.000Z", "entering", tools=[("EnterPlanMode", {})])
        .user("2026-01-15T10:01:00.000Z", "go on")
        .assistant("2026-01-15T10:01:01.000Z", "done planning", tools=[("ExitPlanMode", {})])
        .user("2026-01-15T10:02:00.000Z", "implement")
        .assistant("2026-01-15T10:02:01.000Z", "implemented")
        .write(tmp_path / "t.jsonl")
    )

    modes = [i.in_plan_mode for i in parse_transcript(path).interactions]

    assert modes == [False, True, False]


def test_tool_results_attach_to_the_turn_in_the_same_minute(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "read the config")
        .assistant(
            "2026-01-15T10:00:01.000Z", "reading", tools=[("Read", {"file_path": "/repo/a.toml"})]
        )
        .tool_result("2026-01-15T10:00:02.000Z", "tool-1", "line one\nline two")
        .assistant("2026-01-15T10:00:03.000Z", tools=[("Bash", {"command": "make"})])
        .tool_result("2026-01-15T10:00:04.000Z", "tool-2", "failed", is_error=True)
        .write(tmp_path / "t.jsonl")
    )

    interaction = parse_transcript(path).interactions[0]

    assert [r.to_dict() for r in interaction.tool_results] == [
        {
            "toolUseId": "tool-1",
            "toolName": "Read",
            "success": True,
            "contentLength": 17,
            "lineCount": 2,
            "filePath": "/repo/a.toml",
        },
        {"toolUseId": "tool-2", "toolName": "Bash", "success": False, "contentLength": 6},
    ]
    assert interaction.metadata()["toolsUsed"] == ["Read", "Bash"]


def test_progress_events_exclude_hook_progress(tmp_path: Path, transcript) -> None:
    path = (
        transcript.user("2026-01-15T10:00:00.000Z", "run the agent")
        .raw(
            '{"type": "progress", "timestamp": "2026-01-15T10:00:10.000Z", '
            '"data": {"type": "agent_progress", "prompt": "find usages", "agentId": "a1"}}'
        )
        .raw(
            '{"type": "progress", "timestamp": "2026-01-15T10:00:11.000Z", '
            '"data": {"type": "hook_progress", "hookEvent": "PostToolUse"}}'
        )
        .assistant("2026-01-15T10:00:20.000Z", "agent finished")
        .write(tmp_path / "t.jsonl")
    )

    events = parse_transcript(path).interactions[0].progress_events

    assert len(events) == 1
    assert events[0]["type"] == "agent_progress"
    assert events[0]["agentId"] == "a1"
    assert events[0]["prompt"] == "find usages"


def test_backup_json_restores_the_interaction() -> None:
    stored = {
        "timestamp": "2026-01-15T10:00:00.000Z",
        "user": "q",
        "assistant": "a",
        "thinking": "",
        "isCompactSummary": False,
        "toolsUsed": ["Read"],
        "toolDetails": [{"name": "Read", "detail": "/x.py"}],
        "inPlanMode": True,
    }

    restored = ParsedInteraction.from_dict(stored)

    assert restored.tools_used == ["Read"]
    assert restored.in_plan_mode is True
    assert restored.to_dict() == stored
