import asyncio

import pytest

from coordinator import FetchCoordinator
from errors import FetchError
from models import FeedDescriptor, FetchedFeed


class FakeFetcher:
    """Fetcher stand-in that tracks how many fetches run at once."""

    def __init__(self, failing=(), crashing=(), delay=0.01):
        self.failing = set(failing)
        self.crashing = set(crashing)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if url in self.failing:
                raise FetchError(url, "HTTP 500", attempts=3)
            if url in self.crashing:
                raise RuntimeError("boom")
            return FetchedFeed(title=f"Feed {url}", entries=[{"link": f"{url}/1"}])
        finally:
            self.in_flight -= 1


def descriptors(count):
    return [FeedDescriptor(title=f"Feed {i}", url=f"https://example.com/{i}") for i in range(count)]


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    fetcher = FakeFetcher()
    coordinator = FetchCoordinator(fetcher, concurrency=3)
    results = await coordinator.run(descriptors(10))
    assert len(results) == 10
    assert fetcher.max_in_flight <= 3
    assert len(fetcher.calls) == 10


@pytest.mark.asyncio
async def test_results_follow_input_order():
    feeds = descriptors(5)
    results = await FetchCoordinator(FakeFetcher(), concurrency=5).run(feeds)
    assert [r.descriptor for r in results] == feeds


@pytest.mark.asyncio
async def test_failures_are_isolated():
    feeds = descriptors(4)
    fetcher = FakeFetcher(failing={feeds[1].url}, crashing={feeds[2].url})
    results = await FetchCoordinator(fetcher, concurrency=2).run(feeds)

    assert [r.ok for r in results] == [True, False, False, True]
    assert results[1].error.attempts == 3
    assert isinstance(results[2].error, FetchError)
    assert "RuntimeError" in results[2].error.message


@pytest.mark.asyncio
async def test_progress_is_reported_for_every_feed():
    reports = []
    coordinator = FetchCoordinator(
        FakeFetcher(failing={"https://example.com/0"}),
        concurrency=2,
        on_progress=lambda done, total, result: reports.append((done, total)),
    )
    await coordinator.run(descriptors(3))
    assert sorted(reports) == [(1, 3), (2, 3), (3, 3)]


@pytest.mark.asyncio
async def test_progress_callback_errors_do_not_fail_the_run():
    def explode(done, total, result):
        raise RuntimeError("display went away")

    results = await FetchCoordinator(FakeFetcher(), concurrency=2, on_progress=explode).run(descriptors(3))
    assert all(r.ok for r in results)


@pytest.mark.asyncio
async def test_empty_input():
    assert await FetchCoordinator(FakeFetcher()).run([]) == []


def test_concurrency_must_be_positive():
    with pytest.raises(ValueError):
        FetchCoordinator(FakeFetcher(), concurrency=0)
