#!/usr/bin/env python3
"""
Map raw feed entries onto ``NormalizedItem`` records.

Entries are either feedparser entries or plain mappings using the field names other
feed parsers emit (``isoDate``, ``pubDate``, ``contentSnippet``...). Missing fields
fall back to fixed placeholders; an unparseable or absent date becomes ``None`` and
is left for the recency filter to deal with.
"""

import calendar
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from time import struct_time
from typing import Any, Iterable, List, Optional

from feedparser.datetimes import _parse_date as feedparser_parse_date

from config import get_logger
from models import NO_LINK, NO_TITLE, FeedDescriptor, NormalizedItem
from utils import html_to_text

logger = get_logger("normalizer")

SUMMARY_CONTENT_CHARS = 400

DATE_FIELDS = (
    "isoDate",
    "pubDate",
    "pubdate",
    "published",
    "publishedDate",
    "updated",
)
# feedparser exposes parsed struct_time values next to the raw strings
PARSED_DATE_FIELDS = (
    "published_parsed",
    "updated_parsed",
)


def _get(entry: Any, field: str) -> Any:
    """Read a field from a mapping or an attribute-style entry."""
    if entry is None:
        return None
    if isinstance(entry, Mapping):
        return entry.get(field)
    return getattr(entry, field, None)


def _first_text(entry: Any, *fields: str) -> Optional[str]:
    for field in fields:
        value = _get(entry, field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_date_string(date_str: str) -> Optional[datetime]:
    text = date_str.strip()
    if not text:
        return None

    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    try:
        parsed = feedparser_parse_date(text)
        if parsed:
            return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError, OSError):
        pass

    try:
        return _as_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError, OverflowError):
        return None


def parse_date_value(value: Any) -> Optional[datetime]:
    """Convert assorted date representations into an aware UTC datetime.

    Accepts datetimes, ``time.struct_time``/9-tuples (taken as UTC, as feedparser
    produces them), positive epoch seconds and date strings (ISO-8601, RFC 2822 and
    the formats feedparser understands). Returns None for anything else.
    """
    if value in (None, ""):
        return None

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, ValueError, OSError):
            return None

    if isinstance(value, (struct_time, tuple)):
        try:
            return datetime.fromtimestamp(calendar.timegm(tuple(value)), tz=timezone.utc)
        except (OverflowError, ValueError, OSError, TypeError):
            return None

    if isinstance(value, str):
        return _parse_date_string(value)

    return None


def extract_published_at(entry: Any) -> Optional[datetime]:
    """Return the first parseable publication date of an entry, or None."""
    for field in DATE_FIELDS + PARSED_DATE_FIELDS:
        parsed = parse_date_value(_get(entry, field))
        if parsed is not None:
            return parsed
    return None


def extract_content(entry: Any) -> str:
    """Return the entry's full content as published (HTML or text)."""
    content = _get(entry, "content")
    if isinstance(content, str) and content.strip():
        return content
    # feedparser: list of {"type", "value", ...}
    if isinstance(content, (list, tuple)):
        for content_item in content:
            value = _get(content_item, "value")
            if isinstance(value, str) and value.strip():
                return value
    return _first_text(entry, "content:encoded", "content_encoded") or ""


def extract_summary(entry: Any, content: str) -> str:
    """Short text excerpt: snippet, then summary/description, then the start of the content."""
    snippet = _first_text(entry, "contentSnippet")
    if snippet:
        return snippet
    summary = html_to_text(_first_text(entry, "summary", "description"))
    if summary:
        return summary
    return html_to_text(content)[:SUMMARY_CONTENT_CHARS]


def resolve_source_title(feed_title: Optional[str], descriptor: FeedDescriptor) -> str:
    """Feed-level title, else the OPML title, else the feed URL."""
    for candidate in (feed_title, descriptor.title):
        if candidate and candidate.strip():
            return candidate.strip()
    return descriptor.url


def normalize_entry(entry: Any, source_title: str, feed_url: str) -> NormalizedItem:
    guid = _first_text(entry, "guid", "id")
    link = _first_text(entry, "link") or guid or NO_LINK
    content = extract_content(entry)
    return NormalizedItem(
        title=_first_text(entry, "title") or NO_TITLE,
        link=link,
        published_at=extract_published_at(entry),
        source=source_title,
        feed_url=feed_url,
        guid=guid,
        summary=extract_summary(entry, content),
        content=content,
    )


def normalize(entries: Iterable[Any], source_title: str, feed_url: str) -> List[NormalizedItem]:
    """Normalize every raw entry of one feed. Never fails on missing fields."""
    items = [normalize_entry(entry, source_title, feed_url) for entry in entries]
    undated = sum(1 for item in items if item.published_at is None)
    if undated:
        logger.debug(f"{undated}/{len(items)} entries from {feed_url} have no parseable date")
    return items
