"""
Small text helpers shared by the agents (word budgets, keyword overlap, cleanup).
"""

import re
from typing import Iterable, List, Set

_WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"[A-Za-z0-9][A-Za-z0-9'\-]*")


def word_count(text: str) -> int:
    return len(text.split())


def truncate_words(text: str, limit: int) -> str:
    """Keep at most ``limit`` whitespace-separated words."""
    words = text.split()
    if len(words) <= limit:
        return text.strip()
    return " ".join(words[:limit])


def normalize_text(text: str) -> str:
    """Lowercase, collapse whitespace and strip. Used as the dedup key."""
    return _WHITESPACE.sub(" ", text.lower()).strip()


def clean_text(text: str, max_length: int = 500) -> str:
    cleaned = _WHITESPACE.sub(" ", text).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3].rstrip() + "..."
    return cleaned


def keywords(texts: Iterable[str], min_length: int = 4) -> Set[str]:
    """Lowercased words of at least ``min_length`` characters."""
    found: Set[str] = set()
    for text in texts:
        for word in _WORD.findall(text.lower()):
            if len(word) >= min_length:
                found.add(word)
    return found


def sentences(text: str) -> List[str]:
    return [s.strip() for s in re.split(r"[.!?]+", text) if s.strip()]


def words(text: str) -> List[str]:
    return _WORD.findall(text)
