#!/usr/bin/env python3
"""
Data records for the aggregation pipeline.

All records are immutable; pipeline stages build new records instead of mutating
existing ones.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Tuple

from errors import FetchError

NO_TITLE = "(no title)"
NO_LINK = "#"


@dataclass(frozen=True)
class FeedDescriptor:
    """A subscribed feed as listed in the OPML outline."""
    title: str
    url: str


@dataclass(frozen=True)
class FetchedFeed:
    """A retrieved and parsed feed: feed-level title plus raw entries."""
    title: Optional[str]
    entries: List[Any] = field(default_factory=list)


@dataclass(frozen=True)
class FeedResult:
    """Outcome of fetching one descriptor. Exactly one of ``feed`` and ``error`` is set."""
    descriptor: FeedDescriptor
    feed: Optional[FetchedFeed] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class NormalizedItem:
    """Canonical, format-independent representation of one feed entry."""
    title: str
    link: str
    published_at: Optional[datetime]
    source: str
    feed_url: str
    guid: Optional[str] = None
    summary: str = ""
    content: str = ""

    @property
    def has_link(self) -> bool:
        return bool(self.link) and self.link != NO_LINK


@dataclass(frozen=True)
class Collection:
    """Deduplicated items gathered by one run, before recency filtering."""
    fetched_at: datetime
    feed_count: int
    items: Tuple[NormalizedItem, ...]
    failed: Tuple[FeedResult, ...] = ()

    @property
    def succeeded_count(self) -> int:
        return self.feed_count - len(self.failed)


@dataclass(frozen=True)
class AggregateResult:
    """Final ordered output of a run, handed to a sink.

    ``total_count`` is the number of items that passed the filter before any cap.
    """
    items: Tuple[NormalizedItem, ...]
    fetched_at: datetime
    feed_count: int
    total_count: Optional[int] = None

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def matched_count(self) -> int:
        return self.item_count if self.total_count is None else self.total_count
