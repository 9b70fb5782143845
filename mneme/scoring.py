"""Relevance primitives shared by every knowledge search.

Each document kind is described by a weight table. ``score_document`` walks
the table against a flattened view of the document, so session search and the
approved-rules search rank with the same code.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Literal

from .documents import TagsFile

MIN_TOKEN_LENGTH = 3

FieldValue = str | Sequence[str] | None


@dataclass(frozen=True)
class FieldWeight:
    """``text`` fields earn ``weight`` plus a repeat bonus; ``any`` fields earn it once."""

    field: str
    weight: float
    mode: Literal["text", "any"] = "text"


SESSION_WEIGHTS = (
    FieldWeight("title", 3),
    FieldWeight("tags", 1, "any"),
    FieldWeight("summary.goal", 2),
    FieldWeight("summary.description", 2),
    FieldWeight("discussions", 2, "any"),
    FieldWeight("errors", 2, "any"),
)
RULE_WEIGHTS = (
    FieldWeight("text", 4),
    FieldWeight("key", 3),
    FieldWeight("tags", 1, "any"),
)
DECISION_WEIGHTS = (
    FieldWeight("title", 3),
    FieldWeight("decision", 4),
    FieldWeight("reasoning", 2),
    FieldWeight("tags", 1, "any"),
)
PATTERN_WEIGHTS = (
    FieldWeight("title", 3),
    FieldWeight("pattern", 3),
    FieldWeight("tags", 1, "any"),
)

PRIORITY_BONUS = {"p0": 2, "p1": 1}


def tokenize(query: str) -> list[str]:
    return [token for token in query.lower().split() if len(token) >= MIN_TOKEN_LENGTH]


def expand_keywords_with_aliases(keywords: Iterable[str], tags: TagsFile | None) -> list[str]:
    """Add every term of each tag whose id, label or alias equals a keyword."""

    lowered = [keyword.lower() for keyword in keywords]
    expanded = dict.fromkeys(lowered)
    if tags is None:
        return list(expanded)
    for keyword in lowered:
        for tag in tags.tags:
            terms = tag.terms()
            if keyword in terms:
                expanded.update(dict.fromkeys(terms))
    return list(expanded)


def expand_query_aliases(query: str, tags: TagsFile | None) -> list[str]:
    """Whole-query alias expansion used by the similarity search."""

    expanded = dict.fromkeys([query])
    if tags is None:
        return list(expanded)
    lowered = query.lower()
    for tag in tags.tags:
        if lowered in tag.terms():
            expanded.update(dict.fromkeys(t for t in (tag.id, tag.label, *tag.aliases) if t))
    return list(expanded)


def build_pattern(keywords: Sequence[str]) -> re.Pattern[str]:
    return re.compile("|".join(re.escape(keyword) for keyword in keywords), re.IGNORECASE)


def count_matches(text: str, pattern: re.Pattern[str]) -> int:
    return sum(1 for _ in pattern.finditer(text))


def field_score(text: str | None, pattern: re.Pattern[str], base_score: float) -> float:
    if not text:
        return 0
    count = count_matches(text, pattern)
    if count == 0:
        return 0
    return base_score + (math.log2(count) * 0.5 if count > 1 else 0)


def any_match(values: Iterable[str | None], pattern: re.Pattern[str]) -> bool:
    return any(value and pattern.search(value) for value in values)


def score_document(
    fields: Mapping[str, FieldValue],
    pattern: re.Pattern[str],
    weights: Sequence[FieldWeight],
) -> tuple[float, list[str]]:
    score = 0.0
    matched: list[str] = []
    for weight in weights:
        value = fields.get(weight.field)
        if weight.mode == "any":
            values = [value] if isinstance(value, str) else list(value or [])
            if any_match(values, pattern):
                score += weight.weight
                matched.append(weight.field)
            continue
        text = value if isinstance(value, str) else None
        gained = field_score(text, pattern, weight.weight)
        if gained > 0:
            score += gained
            matched.append(weight.field)
    return score, matched


def levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def is_fuzzy_match(word: str, target: str, max_distance: int = 2) -> bool:
    if len(word) < 4:
        return False
    threshold = min(max_distance, len(word) // 3)
    return levenshtein(word.lower(), target.lower()) <= threshold


def calculate_similarity(text: str, query: str) -> int:
    lower_text = text.lower()
    lower_query = query.lower()
    if lower_text == lower_query:
        return 10
    if lower_query in lower_text:
        return 5
    if lower_text in lower_query:
        return 3
    distance = levenshtein(lower_text, lower_query)
    if distance <= 2:
        return 2
    if distance <= 3:
        return 1
    return 0


def similarity_score(fields: Mapping[str, FieldValue], queries: Sequence[str]) -> int:
    total = 0
    for value in fields.values():
        values = [value] if isinstance(value, str) else list(value or [])
        for item in values:
            if not isinstance(item, str):
                continue
            total += sum(calculate_similarity(item, query) for query in queries)
    return total
