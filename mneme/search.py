"""Knowledge search over session documents and stored interactions."""

from __future__ import annotations

import logging
import re
import sqlite3
import time
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any, Literal

from .documents import (
    DecisionDocument,
    KnowledgeSession,
    PatternsFile,
    RulesFile,
    find_session_file,
    load_document,
    load_tags,
    walk_json_files,
)
from .paths import MnemePaths
from .scoring import (
    DECISION_WEIGHTS,
    PATTERN_WEIGHTS,
    PRIORITY_BONUS,
    RULE_WEIGHTS,
    SESSION_WEIGHTS,
    build_pattern,
    expand_keywords_with_aliases,
    expand_query_aliases,
    is_fuzzy_match,
    score_document,
    similarity_score,
    tokenize,
)
from .store import InteractionHit, InteractionStore

logger = logging.getLogger(__name__)

SearchType = Literal["session", "interaction"]
SearchDetail = Literal["compact", "summary"]

SEARCH_TYPES: tuple[SearchType, ...] = ("session", "interaction")
RULE_FILES = ("dev-rules.json", "review-guidelines.json")
APPROVED_STATUSES = {"approved", "active"}

FTS_SCORE = 5
LIKE_SCORE = 3


def _session_fields(session: KnowledgeSession) -> dict[str, Any]:
    summary = session.summary_fields
    return {
        "title": session.display_title,
        "tags": session.tags,
        "summary.goal": summary.goal,
        "summary.description": summary.description,
        "discussions": [
            value for d in session.discussions for value in (d.topic, d.decision) if value
        ],
        "errors": [value for e in session.errors for value in (e.error, e.solution) if value],
    }


def _fuzzy_session_score(
    session: KnowledgeSession, keywords: Sequence[str]
) -> tuple[float, list[str]]:
    score = 0.0
    matched: list[str] = []
    title_words = session.display_title.lower().split()
    for keyword in keywords:
        if any(is_fuzzy_match(keyword, word) for word in title_words):
            score += 1
            matched.append("title~fuzzy")
        if any(is_fuzzy_match(keyword, tag) for tag in session.tags):
            score += 0.5
            matched.append("tags~fuzzy")
    return score, matched


def search_sessions(
    paths: MnemePaths,
    keywords: Sequence[str],
    *,
    limit: int = 5,
    detail: SearchDetail = "compact",
) -> list[dict[str, Any]]:
    if not keywords:
        return []
    pattern = build_pattern(keywords)
    results: list[dict[str, Any]] = []
    for path in walk_json_files(paths.sessions_dir):
        session = load_document(path, KnowledgeSession)
        if session is None:
            continue
        score, matched = score_document(_session_fields(session), pattern, SESSION_WEIGHTS)
        if score == 0 and len(keywords) <= 2:
            score, matched = _fuzzy_session_score(session, keywords)
        if score <= 0:
            continue
        result: dict[str, Any] = {
            "type": "session",
            "id": session.id,
            "title": session.display_title or session.id,
            "score": score,
            "matchedFields": matched,
            "tags": list(session.tags),
            "createdAt": session.created_at,
        }
        if detail == "summary":
            summary = session.summary_fields
            result["snippet"] = summary.description or summary.goal or ""
            result["goal"] = summary.goal
        results.append(result)
    results.sort(key=lambda r: r["score"], reverse=True)
    return results[:limit]


def _interaction_results(
    hits: Iterable[InteractionHit], score: int, detail: SearchDetail
) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for hit in hits:
        result: dict[str, Any] = {
            "type": "interaction",
            "id": hit["session_id"],
            "title": f"Interaction from {hit['timestamp']}",
            "score": score,
            "matchedFields": ["content"],
            "createdAt": hit["timestamp"],
        }
        if detail == "summary":
            result["snippet"] = hit["snippet"]
        results.append(result)
    return results


def search_interactions(
    store: InteractionStore | None,
    keywords: Sequence[str],
    project_path: str,
    *,
    limit: int = 5,
    detail: SearchDetail = "compact",
) -> list[dict[str, Any]]:
    """Full-text match first; a failing FTS query falls back to LIKE scans."""

    if store is None or not keywords:
        return []
    try:
        hits = store.search_fts(keywords, project_path, limit=limit)
    except sqlite3.Error as exc:
        logger.warning("full-text search failed, falling back to LIKE", exc_info=exc)
    else:
        return _interaction_results(hits, FTS_SCORE, detail)
    try:
        hits = store.search_like(keywords, project_path, limit=limit)
    except sqlite3.Error as exc:
        logger.warning("interaction LIKE search failed", exc_info=exc)
        return []
    return _interaction_results(hits, LIKE_SCORE, detail)


def search_knowledge(
    query: str,
    paths: MnemePaths,
    store: InteractionStore | None = None,
    *,
    types: Sequence[str] = SEARCH_TYPES,
    limit: int = 10,
    offset: int = 0,
    detail: SearchDetail = "compact",
) -> list[dict[str, Any]]:
    keywords = tokenize(query)
    if not keywords:
        return []
    expanded = expand_keywords_with_aliases(keywords, load_tags(paths.tags_path))
    safe_offset = max(0, offset)
    fetch_limit = max(limit + safe_offset, limit, 10)

    results: list[dict[str, Any]] = []
    if "session" in types:
        results.extend(search_sessions(paths, expanded, limit=fetch_limit, detail=detail))
    if "interaction" in types:
        results.extend(
            search_interactions(
                store,
                expanded,
                str(paths.project_path),
                limit=fetch_limit,
                detail=detail,
            )
        )

    results.sort(key=lambda r: r["score"], reverse=True)
    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for result in results:
        key = f"{result['type']}:{result['id']}"
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique[safe_offset : safe_offset + limit]


def _is_approved(status: str | None) -> bool:
    return isinstance(status, str) and status.lower() in APPROVED_STATUSES


def _approved_rules(paths: MnemePaths, pattern: re.Pattern[str]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for name in RULE_FILES:
        rules = load_document(paths.rules_dir / name, RulesFile)
        if rules is None:
            continue
        for item in rules.entries:
            if not _is_approved(item.status):
                continue
            score, matched = score_document(
                {"text": item.text, "key": item.key, "tags": item.tags}, pattern, RULE_WEIGHTS
            )
            score += PRIORITY_BONUS.get(item.priority or "", 0)
            if score <= 0:
                continue
            results.append(
                {
                    "sourceType": "rule",
                    "id": item.id or item.key or "",
                    "title": item.text or item.key or "",
                    "text": item.text or "",
                    "priority": item.priority,
                    "tags": list(item.tags),
                    "score": score,
                    "matchedFields": matched,
                }
            )
    return results


def _approved_decisions(paths: MnemePaths, pattern: re.Pattern[str]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for path in walk_json_files(paths.decisions_dir):
        decision = load_document(path, DecisionDocument)
        if decision is None or not _is_approved(decision.status):
            continue
        score, matched = score_document(
            {
                "title": decision.title,
                "decision": decision.decision,
                "reasoning": decision.reasoning,
                "tags": decision.tags,
            },
            pattern,
            DECISION_WEIGHTS,
        )
        if score <= 0:
            continue
        results.append(
            {
                "sourceType": "decision",
                "id": decision.id or "",
                "title": decision.title or "",
                "text": decision.decision or decision.title or "",
                "tags": list(decision.tags),
                "score": score,
                "matchedFields": matched,
            }
        )
    return results


def _approved_patterns(paths: MnemePaths, pattern: re.Pattern[str]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for path in walk_json_files(paths.patterns_dir):
        patterns = load_document(path, PatternsFile)
        if patterns is None:
            continue
        for item in patterns.entries:
            if not _is_approved(item.status):
                continue
            score, matched = score_document(
                {"title": item.title, "pattern": item.pattern, "tags": item.tags},
                pattern,
                PATTERN_WEIGHTS,
            )
            if score <= 0:
                continue
            results.append(
                {
                    "sourceType": "pattern",
                    "id": item.id or "",
                    "title": item.title or "",
                    "text": item.pattern or item.title or "",
                    "tags": list(item.tags),
                    "score": score,
                    "matchedFields": matched,
                }
            )
    return results


def search_approved_rules(query: str, paths: MnemePaths, *, limit: int = 5) -> list[dict[str, Any]]:
    """Approved rules, decisions and patterns relevant to ``query``."""

    keywords = tokenize(query)
    if not keywords:
        return []
    expanded = expand_keywords_with_aliases(keywords, load_tags(paths.tags_path))
    pattern = build_pattern(expanded)
    results = [
        *_approved_rules(paths, pattern),
        *_approved_decisions(paths, pattern),
        *_approved_patterns(paths, pattern),
    ]
    results.sort(key=lambda r: r["score"], reverse=True)
    seen: set[str] = set()
    unique: list[dict[str, Any]] = []
    for result in results:
        if result["id"] in seen:
            continue
        seen.add(result["id"])
        unique.append(result)
    return unique[:limit]


FuzzyTarget = Literal["sessions", "decisions", "patterns"]


def fuzzy_search(
    query: str,
    paths: MnemePaths,
    *,
    targets: Sequence[FuzzyTarget] = ("sessions", "decisions"),
    limit: int = 20,
    timeout_ms: int = 10000,
    clock: Callable[[], float] = time.monotonic,
) -> list[dict[str, Any]]:
    """Similarity search that stops scanning once ``timeout_ms`` has elapsed."""

    if not query.strip():
        return []
    queries = expand_query_aliases(query, load_tags(paths.tags_path))
    deadline = clock() + timeout_ms / 1000
    results: list[dict[str, Any]] = []

    def expired() -> bool:
        if clock() > deadline:
            logger.info("fuzzy search deadline reached, returning partial results")
            return True
        return False

    if "sessions" in targets:
        for path in walk_json_files(paths.sessions_dir):
            if expired():
                break
            session = load_document(path, KnowledgeSession)
            if session is None:
                continue
            score = similarity_score(
                {"title": session.title, "goal": session.goal, "tags": session.tags}, queries
            )
            if score > 0:
                results.append(
                    {
                        "type": "session",
                        "id": session.id,
                        "score": score,
                        "title": session.title or "Untitled",
                    }
                )

    if "decisions" in targets and not expired():
        for path in walk_json_files(paths.decisions_dir):
            if expired():
                break
            decision = load_document(path, DecisionDocument)
            if decision is None:
                continue
            score = similarity_score(
                {"title": decision.title, "decision": decision.decision, "tags": decision.tags},
                queries,
            )
            if score > 0:
                results.append(
                    {
                        "type": "decision",
                        "id": decision.id or path.stem,
                        "score": score,
                        "title": decision.title or "Untitled",
                    }
                )

    if "patterns" in targets and not expired():
        for path in walk_json_files(paths.patterns_dir):
            if expired():
                break
            patterns = load_document(path, PatternsFile)
            if patterns is None:
                continue
            for item in patterns.entries:
                score = similarity_score(
                    {
                        "description": item.description,
                        "errorPattern": item.error_pattern,
                        "tags": item.tags,
                    },
                    queries,
                )
                if score > 0:
                    results.append(
                        {
                            "type": "pattern",
                            "id": f"{path.stem}-{item.type or 'unknown'}",
                            "score": score,
                            "title": item.description or "Untitled pattern",
                        }
                    )

    results.sort(key=lambda r: r["score"], reverse=True)
    return results[:limit]


def _session_title(sessions_dir: Path, session_id: str) -> str:
    path = find_session_file(sessions_dir, session_id)
    session = load_document(path, KnowledgeSession) if path else None
    if session is None or not session.title:
        return session_id
    return session.title


def search_by_files(
    store: InteractionStore,
    paths: MnemePaths,
    file_paths: Sequence[str],
    *,
    limit: int = 3,
) -> list[dict[str, Any]]:
    """Sessions that touched the most of ``file_paths`` (project-relative)."""

    if not file_paths:
        return []
    try:
        rows = store.files_for_paths(str(paths.project_path), list(file_paths))
    except sqlite3.Error as exc:
        logger.warning("file index lookup failed", exc_info=exc)
        return []
    sessions: dict[str, dict[str, Any]] = {}
    for row in rows:
        entry = sessions.setdefault(row["session_id"], {"files": [], "count": 0})
        if row["file_path"] not in entry["files"]:
            entry["files"].append(row["file_path"])
        entry["count"] += int(row["cnt"])
    ranked = sorted(
        sessions.items(), key=lambda kv: (len(kv[1]["files"]), kv[1]["count"]), reverse=True
    )
    return [
        {
            "sessionId": session_id,
            "title": _session_title(paths.sessions_dir, session_id),
            "matchedFiles": data["files"],
            "fileCount": data["count"],
        }
        for session_id, data in ranked[:limit]
    ]
