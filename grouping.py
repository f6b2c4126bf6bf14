# grouping.py
from __future__ import annotations

import math
from collections import Counter
from typing import Dict, List, Sequence

from records import ResolvedService


def tag_frequencies(services: Sequence[ResolvedService]) -> Dict[str, int]:
    """Number of services carrying each tag (a tag repeated on one service counts once)."""
    counts: Counter = Counter()
    for s in services:
        counts.update(set(s.tags))
    return dict(counts)


def valid_tags(
    services: Sequence[ResolvedService],
    counts: Dict[str, int],
    frequency_threshold: float,
    min_group_size: int,
) -> List[str]:
    """
    Tags allowed to form a group, sorted by name.

    A tag qualifies when it is not too common (below threshold * len(services))
    or is already big enough (>= min_group_size). A tag seen once only qualifies
    when min_group_size > 1 if some service carries that tag and nothing else.
    """
    total = len(services)
    limit = frequency_threshold * total
    out: List[str] = []
    for tag in sorted(counts):
        count = counts[tag]
        if not (count < limit or count >= min_group_size):
            continue
        if count == 1 and min_group_size > 1:
            if any(set(s.tags) == {tag} for s in services):
                out.append(tag)
            continue
        out.append(tag)
    return out


def select_best_tag(tags: Sequence[str], counts: Dict[str, int], target_size: float) -> str:
    """Tag whose frequency is closest to target_size; earlier names win ties."""
    best, best_dist = "", math.inf
    for tag in tags:
        dist = abs(counts.get(tag, 0) - target_size)
        if dist < best_dist:
            best, best_dist = tag, dist
    return best


def assign_groups(
    services: List[ResolvedService],
    grouping_enabled: bool = True,
    frequency_threshold: float = 0.9,
    min_group_size: int = 2,
) -> List[ResolvedService]:
    """
    Set a group label on every service that does not already have one.

    Repeatedly takes the valid tag whose size is closest to sqrt(remaining),
    labels its services with it and drops them from the pool. Services never
    picked keep an empty label ("uncategorized").
    """
    if not grouping_enabled:
        for s in services:
            s.group = ""
        return services

    remaining = [s for s in services if not s.group]
    used = set()

    while remaining:
        counts = tag_frequencies(remaining)
        candidates = [t for t in valid_tags(remaining, counts, frequency_threshold, min_group_size)
                      if t not in used]
        if not candidates:
            break
        best = select_best_tag(candidates, counts, math.sqrt(len(remaining)))
        if not best:
            break
        used.add(best)

        left = []
        for s in remaining:
            if best in s.tags:
                s.group = best
            else:
                left.append(s)
        remaining = left

    return services
