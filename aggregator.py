#!/usr/bin/env python3
"""
Aggregation pipeline.

collect: fetch every feed (bounded concurrency) → normalize → deduplicate
finalize: recency filter → newest-first sort → optional cap

The two phases are separate so the interactive viewer can re-filter the last
collection when the user changes the window, without fetching again.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from time import monotonic
from typing import List, Optional, Sequence

from aiohttp import ClientSession

from config import config, get_logger
from coordinator import FetchCoordinator, ProgressCallback
from dedup import UndatedPolicy, deduplicate, process
from fetcher import FeedFetcher
from models import AggregateResult, Collection, FeedDescriptor, NormalizedItem
from normalizer import normalize, resolve_source_title
from opml import read_opml_file
from sinks import SnapshotSink
from telemetry import init_telemetry, trace_span
from utils import format_duration

logger = get_logger("aggregator")
init_telemetry("feed-aggregator")


@dataclass(frozen=True)
class ModePolicy:
    """How a mode filters and bounds its output."""
    window: timedelta
    undated: UndatedPolicy
    cap: Optional[int] = None


def batch_policy(days: Optional[int] = None, cap: Optional[int] = None) -> ModePolicy:
    """Snapshot runs drop undated items and cap the output."""
    return ModePolicy(
        window=timedelta(days=days or config.MAX_DAYS),
        undated="exclude",
        cap=cap or config.MAX_ITEMS,
    )


def interactive_policy(hours: int) -> ModePolicy:
    """The viewer shows undated items as if published now and has no cap."""
    return ModePolicy(window=timedelta(hours=hours), undated="now", cap=None)


class Aggregator:
    """Runs the fetch → normalize → dedup → filter → sort pipeline."""

    def __init__(
        self,
        fetcher: FeedFetcher,
        *,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.coordinator = FetchCoordinator(
            fetcher,
            concurrency=concurrency or config.CONCURRENCY,
            on_progress=on_progress,
        )

    async def collect(self, descriptors: Sequence[FeedDescriptor]) -> Collection:
        """Fetch all feeds and return their deduplicated items.

        Items are accumulated in descriptor order once all fetches are done, so the
        result does not depend on which feed finished first.
        """
        results = await self.coordinator.run(descriptors)

        collected: List[NormalizedItem] = []
        failed = []
        for result in results:
            if not result.ok:
                failed.append(result)
                continue
            source = resolve_source_title(result.feed.title, result.descriptor)
            if not result.feed.entries:
                logger.info(f"No items for {result.descriptor.url}")
                continue
            collected.extend(normalize(result.feed.entries, source, result.descriptor.url))
            logger.info(f"Fetched {len(result.feed.entries)} items from {source}")

        items = deduplicate(collected)
        if failed:
            logger.warning(
                "%d/%d feeds failed: %s",
                len(failed),
                len(results),
                ", ".join(r.descriptor.url for r in failed),
            )
        logger.info(f"Collected {len(items)} unique items ({len(collected) - len(items)} duplicates dropped)")
        return Collection(
            fetched_at=datetime.now(timezone.utc),
            feed_count=len(descriptors),
            items=tuple(items),
            failed=tuple(failed),
        )

    async def run(self, descriptors: Sequence[FeedDescriptor], policy: ModePolicy, now: Optional[datetime] = None) -> AggregateResult:
        return finalize(await self.collect(descriptors), policy, now)


def finalize(collection: Collection, policy: ModePolicy, now: Optional[datetime] = None) -> AggregateResult:
    """Apply a mode policy to a collection."""
    now = now or datetime.now(timezone.utc)
    matched = process(
        collection.items,
        now - policy.window,
        undated=policy.undated,
        now=now,
    )
    items = matched[:policy.cap] if policy.cap is not None else matched
    return AggregateResult(
        items=tuple(items),
        fetched_at=collection.fetched_at,
        feed_count=collection.feed_count,
        total_count=len(matched),
    )


@trace_span(
    "batch.run",
    tracer_name="aggregator",
    attr_from_args=lambda opml_file=None, output_file=None, days=None, concurrency=None: {
        "batch.opml": opml_file or config.OPML_FILE,
        "batch.output": output_file or config.OUTPUT_FILE,
    },
)
async def run_batch(
    opml_file: Optional[str] = None,
    output_file: Optional[str] = None,
    days: Optional[int] = None,
    concurrency: Optional[int] = None,
) -> AggregateResult:
    """Build one JSON snapshot from an OPML file.

    Raises:
        ParseError: If the OPML file cannot be read or parsed.
        WriteError: If the snapshot cannot be written.
    """
    opml_file = opml_file or config.OPML_FILE
    output_file = output_file or config.OUTPUT_FILE
    start_time = monotonic()

    logger.info(f"Reading OPML: {opml_file}")
    descriptors = read_opml_file(opml_file)
    logger.info(f"Found feeds: {len(descriptors)}")

    async with ClientSession() as session:
        aggregator = Aggregator(FeedFetcher(session), concurrency=concurrency)
        result = await aggregator.run(descriptors, batch_policy(days=days))

    SnapshotSink(output_file).write(result)
    logger.info(
        f"Wrote {output_file} items: {result.item_count} "
        f"(feeds: {result.feed_count}, elapsed: {format_duration(monotonic() - start_time)})"
    )
    return result
