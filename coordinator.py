#!/usr/bin/env python3
"""
Bounded-concurrency fan-out of feed fetches.

Every descriptor gets its own task; a semaphore caps how many are in flight. A feed
that fails permanently is recorded as an error value in its ``FeedResult`` and has
no effect on the others. ``run`` returns only once every task has finished.
"""

from asyncio import Semaphore, create_task, gather
from typing import Callable, List, Optional, Sequence

from config import get_logger
from errors import FetchError
from fetcher import FeedFetcher
from models import FeedDescriptor, FeedResult
from telemetry import trace_span

logger = get_logger("coordinator")

ProgressCallback = Callable[[int, int, FeedResult], None]


class FetchCoordinator:
    """Run a ``FeedFetcher`` over many descriptors with a concurrency limit."""

    def __init__(
        self,
        fetcher: FeedFetcher,
        *,
        concurrency: int = 6,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.fetcher = fetcher
        self.concurrency = concurrency
        self.on_progress = on_progress

    @trace_span(
        "coordinator.run",
        tracer_name="coordinator",
        attr_from_args=lambda self, descriptors: {
            "feed.count": len(descriptors),
            "fetch.concurrency": self.concurrency,
        },
    )
    async def run(self, descriptors: Sequence[FeedDescriptor]) -> List[FeedResult]:
        """Fetch all descriptors and return one result per descriptor, in input order.

        Completion order is not deterministic; only the returned list order is.
        """
        semaphore = Semaphore(self.concurrency)
        total = len(descriptors)
        done = 0

        async def fetch_with_semaphore(descriptor: FeedDescriptor) -> FeedResult:
            nonlocal done
            async with semaphore:
                logger.info(f"Fetching: {descriptor.url}")
                try:
                    feed = await self.fetcher.fetch(descriptor.url)
                    result = FeedResult(descriptor=descriptor, feed=feed)
                except FetchError as e:
                    logger.warning(f"Failed to fetch {descriptor.url}: {e.message}")
                    result = FeedResult(descriptor=descriptor, error=e)
                except Exception as e:
                    logger.error(f"Unexpected error fetching {descriptor.url}: {e}", exc_info=True)
                    result = FeedResult(
                        descriptor=descriptor,
                        error=FetchError(descriptor.url, f"unexpected {e.__class__.__name__}: {e}"),
                    )
            done += 1
            self._report(done, total, result)
            return result

        tasks = [create_task(fetch_with_semaphore(d)) for d in descriptors]
        return list(await gather(*tasks))

    def _report(self, done: int, total: int, result: FeedResult) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(done, total, result)
        except Exception as e:
            # A broken progress display never fails the fetch run
            logger.error(f"Progress callback failed: {e}")
