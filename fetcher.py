#!/usr/bin/env python3
"""
RSS/Atom feed fetcher.

Retrieves a single feed over HTTP and parses it with feedparser, retrying transient
failures (network errors, timeouts, bad HTTP status, malformed feeds) with
exponential backoff. Each attempt runs under its own timeout.
"""

from asyncio import get_running_loop, wait_for, TimeoutError
from functools import partial
from typing import List, Optional

import feedparser
from aiohttp import ClientError, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FetchError
from models import FetchedFeed
from telemetry import init_telemetry, trace_span
from utils import RetryHelper, proxied_url

# Module-specific logger
logger = get_logger("fetcher")
init_telemetry("feed-aggregator-fetcher")

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"


class MalformedFeedError(ValueError):
    """Raised when a response body is not a usable RSS/Atom document."""


class FeedFetcher:
    """Fetch and parse feeds with retries, sharing one aiohttp session."""

    def __init__(
        self,
        session: ClientSession,
        *,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        proxy_endpoint: Optional[str] = None,
    ) -> None:
        self.session = session
        self.retry_helper = RetryHelper(
            max_retries=config.MAX_RETRIES if max_retries is None else max_retries,
            base_delay=config.RETRY_DELAY_BASE if base_delay is None else base_delay,
        )
        self.timeout = float(config.HTTP_TIMEOUT if timeout is None else timeout)
        self.proxy_endpoint = proxy_endpoint

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url: {"feed.url": url},
    )
    async def fetch(self, url: str) -> FetchedFeed:
        """Fetch and parse one feed.

        Raises:
            FetchError: After every attempt has failed.
        """
        attempts = self.retry_helper.total_attempts
        last_error = "no attempt made"
        for attempt in range(attempts):
            try:
                return await wait_for(self._fetch_once(url), timeout=self.timeout)
            except TimeoutError:
                last_error = f"timed out after {self.timeout:g}s"
            except ClientError as e:
                last_error = self._format_client_error(e)
            except (MalformedFeedError, OSError) as e:
                last_error = f"{e.__class__.__name__} {e}"

            if attempt < attempts - 1:
                delay = self.retry_helper.calculate_delay(attempt)
                logger.warning(
                    "Fetch error for %s (attempt %d/%d): %s. Retrying in %.1fs",
                    url,
                    attempt + 1,
                    attempts,
                    last_error,
                    delay,
                )
                await self.retry_helper.sleep_for_attempt(attempt)
            else:
                logger.warning(
                    "Fetch error for %s (attempt %d/%d): %s. Giving up",
                    url,
                    attempt + 1,
                    attempts,
                    last_error,
                )

        raise FetchError(url, last_error, attempts=attempts)

    async def _fetch_once(self, url: str) -> FetchedFeed:
        content = await self._download(url)
        # feedparser is not async, run it in the default executor
        loop = get_running_loop()
        return await loop.run_in_executor(None, partial(self.parse_feed, content, url))

    async def _download(self, url: str) -> bytes:
        target = proxied_url(url, self.proxy_endpoint)
        headers = {"User-Agent": config.USER_AGENT, "Accept": FEED_ACCEPT}
        async with self.session.get(
            target,
            headers=headers,
            timeout=ClientTimeout(total=self.timeout),
            max_redirects=config.MAX_REDIRECTS,
        ) as response:
            response.raise_for_status()
            return await response.read()

    @staticmethod
    def parse_feed(content: bytes, url: str = "") -> FetchedFeed:
        """Parse a feed document into its title and raw entries.

        Raises:
            MalformedFeedError: If the document has no recognizable feed structure.
        """
        feed = feedparser.parse(content, sanitize_html=True, resolve_relative_uris=True)
        entries: List = list(feed.get("entries") or [])
        meta = feed.get("feed") or {}

        if not entries and not feed.get("version"):
            reason = feed.get("bozo_exception") or "not an RSS/Atom document"
            raise MalformedFeedError(f"Invalid feed at {url}: {reason}")
        if feed.get("bozo"):
            logger.debug(f"Feed parsing warning for {url}: {feed.get('bozo_exception')}")

        title = (meta.get("title") or "").strip() or None
        logger.debug(f"Parsed {url} as {feed.get('version') or 'unknown'} with {len(entries)} entries")
        return FetchedFeed(title=title, entries=entries)

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            strerror = getattr(os_error, 'strerror', None)
            if errno is not None:
                parts.append(f"errno={errno}")
            if strerror:
                parts.append(str(strerror))
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)
