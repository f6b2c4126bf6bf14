# fuzzy.py
from __future__ import annotations

from typing import Iterable, List, Optional


def matches_fold(query: str, target: str) -> bool:
    """
    Case-insensitive approximate match: every character of query appears in
    target, in order, with any gap between them ("jfn" matches "jellyfin").
    """
    q = query.casefold()
    t = target.casefold()
    if len(q) > len(t):
        return False
    pos = 0
    for ch in q:
        pos = t.find(ch, pos)
        if pos < 0:
            return False
        pos += 1
    return True


def find_fold(query: str, candidates: Iterable[str]) -> List[str]:
    """All matching candidates, in candidate order (rank 0 first)."""
    if not query:
        return []
    return [c for c in candidates if matches_fold(query, c)]


def best_match(query: str, candidates: Iterable[str]) -> Optional[str]:
    """
    First match in candidate order. Callers pass names sorted shortest-first so
    a base product name wins over longer variants sharing its letters.
    """
    if not query:
        return None
    for c in candidates:
        if matches_fold(query, c):
            return c
    return None
