"""Provide helpers for timestamps, id ordering and word matching."""

from __future__ import annotations

import re
from functools import lru_cache
from datetime import datetime, timezone
from typing import Iterable

_ID_PART_RE = re.compile(r"(\d+)")
_WORD_RE = re.compile(r"[a-z0-9][a-z0-9_'/-]*")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "the", "of", "to", "for", "in", "on", "at", "by", "with", "from", "into",
        "is", "are", "be", "it", "its", "this", "that", "these", "those", "then", "so", "or", "as",
        "we", "our", "you", "your", "i", "my", "all", "any", "some", "new", "make", "sure",
        "add", "create", "implement", "build", "write", "fix", "update", "set", "setup", "up",
        "use", "using", "change", "remove", "move", "do", "get", "after", "before", "once",
        "requires", "require", "depends", "depend", "needs", "need", "task", "todo", "fixme",
    }
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def natural_key(value: str) -> tuple:
    """Sort key that orders ``task-2`` before ``task-10``."""
    parts = _ID_PART_RE.split(value)
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p != "")


def sort_ids(ids: Iterable[str]) -> list[str]:
    return sorted(ids, key=natural_key)


def normalize_text(text: str) -> str:
    return " ".join(text.lower().split())


def words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def _stem(word: str) -> str:
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def significant_words(text: str, extra_stopwords: Iterable[str] = ()) -> set[str]:
    """Return the content words of ``text`` (stopwords dropped, naive plural folding)."""
    skip = STOPWORDS | frozenset(w.lower() for w in extra_stopwords)
    result: set[str] = set()
    for word in words(text):
        word = word.strip("'/-")
        if len(word) < 3 or word in skip or word.isdigit():
            continue
        result.add(_stem(word))
    return result


@lru_cache(maxsize=1024)
def keyword_pattern(phrase: str) -> re.Pattern[str]:
    """Compile a case-insensitive whole-word pattern for ``phrase``."""
    escaped = r"\s+".join(re.escape(part) for part in phrase.lower().split())
    return re.compile(rf"(?<![^\W_]){escaped}(?![^\W_])", re.IGNORECASE)


def count_keywords(text: str, keywords: Iterable[str]) -> int:
    return sum(1 for kw in keywords if keyword_pattern(kw).search(text))


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
