#!/usr/bin/env python3
"""
Deduplication, recency filtering and ordering of normalized items.

Dedup key priority: link (unless it is the placeholder), then guid, then the
(title, published_at) pair. The last fallback can merge distinct items that share a
title and both lack a date; that is an accepted approximation.
"""

from datetime import datetime, timezone
from typing import Hashable, Iterable, List, Literal, Optional, Set

from models import NormalizedItem

UndatedPolicy = Literal["exclude", "now"]
UNDATED_POLICIES = ("exclude", "now")


def dedup_key(item: NormalizedItem) -> Hashable:
    if item.has_link:
        return ("link", item.link)
    if item.guid:
        return ("guid", item.guid)
    published = item.published_at.isoformat() if item.published_at else None
    return ("title_date", item.title, published)


def deduplicate(items: Iterable[NormalizedItem]) -> List[NormalizedItem]:
    """Drop later items whose key was already seen, preserving input order."""
    seen: Set[Hashable] = set()
    out: List[NormalizedItem] = []
    for item in items:
        key = dedup_key(item)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def _check_policy(undated: str) -> None:
    if undated not in UNDATED_POLICIES:
        raise ValueError(f"undated policy must be one of {UNDATED_POLICIES}, got {undated!r}")


def effective_time(item: NormalizedItem, now: datetime) -> datetime:
    """Publication time used for filtering and sorting; undated items count as ``now``."""
    return item.published_at if item.published_at is not None else now


def filter_recent(
    items: Iterable[NormalizedItem],
    window_start: datetime,
    *,
    undated: UndatedPolicy = "exclude",
    now: Optional[datetime] = None,
) -> List[NormalizedItem]:
    """Keep items published at or after ``window_start``.

    Undated items are dropped under ``"exclude"`` and treated as published ``now``
    under ``"now"``.
    """
    _check_policy(undated)
    now = now or datetime.now(timezone.utc)
    kept = []
    for item in items:
        if item.published_at is None and undated == "exclude":
            continue
        if effective_time(item, now) >= window_start:
            kept.append(item)
    return kept


def sort_newest_first(items: Iterable[NormalizedItem], *, now: Optional[datetime] = None) -> List[NormalizedItem]:
    """Stable sort, newest first; equal timestamps keep their input order."""
    now = now or datetime.now(timezone.utc)
    return sorted(items, key=lambda item: effective_time(item, now), reverse=True)


def process(
    items: Iterable[NormalizedItem],
    window_start: datetime,
    *,
    undated: UndatedPolicy = "exclude",
    now: Optional[datetime] = None,
    cap: Optional[int] = None,
) -> List[NormalizedItem]:
    """Deduplicate, filter by recency, sort newest first and optionally truncate."""
    now = now or datetime.now(timezone.utc)
    recent = filter_recent(deduplicate(items), window_start, undated=undated, now=now)
    ordered = sort_newest_first(recent, now=now)
    if cap is not None:
        ordered = ordered[:cap]
    return ordered
