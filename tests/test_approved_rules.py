from __future__ import annotations

from mneme.documents import write_document
from mneme.paths import MnemePaths
from mneme.search import search_approved_rules


def _seed(paths: MnemePaths) -> None:
    write_document(
        paths.rules_dir / "dev-rules.json",
        {
            "version": 1,
            "items": [
                {
                    "id": "r1",
                    "key": "no-print",
                    "text": "Never use print for logging",
                    "status": "approved",
                    "priority": "p0",
                    "tags": ["logging"],
                },
                {"id": "r2", "text": "Logging must be structured", "status": "draft"},
                {
                    "id": "r3",
                    "key": "style",
                    "text": "Prefer pathlib",
                    "status": "Approved",
                    "priority": "p1",
                },
            ],
        },
    )
    write_document(
        paths.rules_dir / "review-guidelines.json",
        {"version": 1, "rules": [{"id": "r1", "text": "Check logging calls", "status": "active"}]},
    )
    write_document(
        paths.decisions_dir / "2026" / "01" / "structured-logs.json",
        {"id": "d1", "title": "Structured logging", "decision": "Use JSON logs", "status": "approved"},
    )
    write_document(
        paths.decisions_dir / "2026" / "01" / "proposal.json",
        {"id": "d2", "title": "Drop logging entirely", "decision": "Maybe later"},
    )
    write_document(
        paths.patterns_dir / "python.json",
        {
            "items": [
                {
                    "id": "p1",
                    "title": "Logger per module",
                    "pattern": "logging.getLogger(__name__)",
                    "status": "active",
                }
            ]
        },
    )


def test_approved_knowledge_is_ranked_across_kinds(paths: MnemePaths) -> None:
    _seed(paths)

    results = search_approved_rules("logging", paths)

    assert [(r["sourceType"], r["id"]) for r in results] == [
        ("rule", "r1"),
        ("decision", "d1"),
        ("pattern", "p1"),
        ("rule", "r3"),
    ]
    top = results[0]
    assert top["score"] == 7
    assert top["matchedFields"] == ["text", "tags"]
    assert top["priority"] == "p0"
    assert top["text"] == "Never use print for logging"


def test_priority_bonus_surfaces_unmatched_critical_rules(paths: MnemePaths) -> None:
    _seed(paths)

    results = search_approved_rules("pathlib", paths)

    assert results[0]["id"] == "r3"
    assert results[0]["score"] == 5
    assert ("rule", "r1") in {(r["sourceType"], r["id"]) for r in results}


def test_drafts_and_short_queries_are_ignored(paths: MnemePaths) -> None:
    _seed(paths)

    ids = {r["id"] for r in search_approved_rules("structured", paths)}

    assert "r2" not in ids
    assert "d1" in ids
    assert search_approved_rules("db", paths) == []


def test_limit_applies_after_dedupe(paths: MnemePaths) -> None:
    _seed(paths)

    assert [r["id"] for r in search_approved_rules("logging", paths, limit=2)] == ["r1", "d1"]
