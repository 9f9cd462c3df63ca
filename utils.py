#!/usr/bin/env python3
"""
Utility classes and functions for the feed aggregator.

This module contains helpers shared by the fetcher, normalizer and sinks:
retry backoff, HTML-to-text reduction, proxy URL construction and duration formatting.
"""

from asyncio import sleep
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup

from config import get_logger

# Module-specific logger
logger = get_logger("utils")


class RetryHelper:
    """Helper class for implementing retry logic with exponential backoff.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n`` seconds, without jitter.
    """

    def __init__(self, max_retries: int = 2, base_delay: float = 1.0, max_delay: Optional[float] = None):
        """Initialize the retry helper.

        Args:
            max_retries: Number of retries after the first attempt
            base_delay: Base delay in seconds for exponential backoff
            max_delay: Optional ceiling in seconds between retries
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        Args:
            attempt: The index of the attempt that just failed (0-based)

        Returns:
            Delay in seconds (with exponential backoff)
        """
        delay = self.base_delay * (2 ** attempt)
        if self.max_delay is not None:
            return min(delay, self.max_delay)
        return delay

    async def sleep_for_attempt(self, attempt: int):
        """Sleep for the calculated delay for the given attempt."""
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def html_to_text(html_content: Optional[str]) -> str:
    """Reduce an HTML fragment to whitespace-normalized plain text.

    Plain text passes through with its whitespace collapsed.
    """
    if not html_content:
        return ""
    if "<" not in html_content and "&" not in html_content:
        return " ".join(html_content.split())
    soup = BeautifulSoup(html_content, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())


def proxied_url(url: str, proxy_endpoint: Optional[str]) -> str:
    """Route a feed URL through a query-parameter proxy endpoint.

    The target URL is percent-encoded in full and appended to the endpoint, e.g.
    ``https://proxy.example/raw?url=`` + ``https%3A%2F%2Fsite%2Ffeed``.
    """
    if not proxy_endpoint:
        return url
    return f"{proxy_endpoint}{quote(url, safe='')}"


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """Format an aware datetime as an ISO-8601 UTC string with millisecond precision and a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1h 23m 45s")
    """
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:  # Always show seconds if nothing else
        parts.append(f"{secs}s")

    return " ".join(parts)
