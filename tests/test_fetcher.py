import asyncio

import pytest
from aiohttp import ClientSession, web
from aiohttp.test_utils import TestServer

import utils
from errors import FetchError
from fetcher import FeedFetcher, MalformedFeedError
from utils import RetryHelper, proxied_url


RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Feed</title>
    <link>https://example.com/</link>
    <item>
      <title>First post</title>
      <link>https://example.com/posts/1</link>
      <guid>https://example.com/posts/1</guid>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
      <description>&lt;p&gt;Hello&lt;/p&gt;</description>
    </item>
  </channel>
</rss>
"""


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry delays instead of sleeping."""
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(utils, "sleep", fake_sleep)
    return delays


def test_backoff_delays_double_without_jitter():
    helper = RetryHelper(max_retries=2, base_delay=1.0)
    assert helper.total_attempts == 3
    assert [helper.calculate_delay(n) for n in range(3)] == [1.0, 2.0, 4.0]
    assert RetryHelper(max_retries=5, base_delay=1.0, max_delay=3.0).calculate_delay(4) == 3.0
    with pytest.raises(ValueError):
        RetryHelper(max_retries=-1)


def test_proxied_url_encodes_target():
    assert proxied_url("https://site.example/feed?a=1", None) == "https://site.example/feed?a=1"
    assert (
        proxied_url("https://site.example/feed?a=1", "https://proxy.example/raw?url=")
        == "https://proxy.example/raw?url=https%3A%2F%2Fsite.example%2Ffeed%3Fa%3D1"
    )


def test_parse_feed_extracts_title_and_entries():
    feed = FeedFetcher.parse_feed(RSS, "https://example.com/feed")
    assert feed.title == "Example Feed"
    assert len(feed.entries) == 1
    assert feed.entries[0]["link"] == "https://example.com/posts/1"


def test_parse_feed_rejects_non_feed_documents():
    with pytest.raises(MalformedFeedError):
        FeedFetcher.parse_feed(b"this is not a feed", "https://example.com/feed")


@pytest.mark.asyncio
async def test_fetch_success_over_http():
    async def handler(request):
        assert "FeedAggregator" in request.headers["User-Agent"]
        return web.Response(body=RSS, content_type="application/rss+xml")

    app = web.Application()
    app.router.add_get("/feed.xml", handler)
    async with TestServer(app) as server, ClientSession() as session:
        fetcher = FeedFetcher(session, max_retries=0, timeout=5)
        feed = await fetcher.fetch(str(server.make_url("/feed.xml")))

    assert feed.title == "Example Feed"
    assert len(feed.entries) == 1


@pytest.mark.asyncio
async def test_fetch_retries_then_succeeds(no_sleep):
    calls = {"count": 0}

    async def handler(request):
        calls["count"] += 1
        if calls["count"] < 3:
            return web.Response(status=503)
        return web.Response(body=RSS, content_type="application/rss+xml")

    app = web.Application()
    app.router.add_get("/flaky.xml", handler)
    async with TestServer(app) as server, ClientSession() as session:
        fetcher = FeedFetcher(session, max_retries=2, base_delay=1.0, timeout=5)
        feed = await fetcher.fetch(str(server.make_url("/flaky.xml")))

    assert calls["count"] == 3
    assert feed.title == "Example Feed"
    assert no_sleep == [1.0, 2.0]


@pytest.mark.asyncio
async def test_fetch_gives_up_after_all_attempts(no_sleep):
    calls = {"count": 0}

    async def handler(request):
        calls["count"] += 1
        return web.Response(status=500)

    app = web.Application()
    app.router.add_get("/broken.xml", handler)
    async with TestServer(app) as server, ClientSession() as session:
        fetcher = FeedFetcher(session, max_retries=2, base_delay=0.5, timeout=5)
        url = str(server.make_url("/broken.xml"))
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(url)

    assert calls["count"] == 3
    assert excinfo.value.attempts == 3
    assert excinfo.value.url == url
    assert "status=500" in excinfo.value.message
    # No sleep after the final attempt
    assert no_sleep == [0.5, 1.0]


@pytest.mark.asyncio
async def test_malformed_feed_is_retried_and_reported(no_sleep):
    async def handler(request):
        return web.Response(text="plain text, not a feed")

    app = web.Application()
    app.router.add_get("/text", handler)
    async with TestServer(app) as server, ClientSession() as session:
        fetcher = FeedFetcher(session, max_retries=1, base_delay=0.1, timeout=5)
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(str(server.make_url("/text")))

    assert excinfo.value.attempts == 2
    assert "MalformedFeedError" in excinfo.value.message


@pytest.mark.asyncio
async def test_each_attempt_has_its_own_timeout(no_sleep):
    async def handler(request):
        await asyncio.sleep(0.5)
        return web.Response(body=RSS)

    app = web.Application()
    app.router.add_get("/slow.xml", handler)
    async with TestServer(app) as server, ClientSession() as session:
        fetcher = FeedFetcher(session, max_retries=1, base_delay=0, timeout=0.05)
        with pytest.raises(FetchError) as excinfo:
            await fetcher.fetch(str(server.make_url("/slow.xml")))

    assert excinfo.value.attempts == 2
    assert "timed out" in excinfo.value.message


@pytest.mark.asyncio
async def test_fetch_through_proxy_endpoint():
    origin = "https://origin.example/feed.xml"
    seen = []

    async def raw(request):
        seen.append(request.query.get("url"))
        return web.Response(body=RSS, content_type="application/rss+xml")

    app = web.Application()
    app.router.add_get("/raw", raw)
    async with TestServer(app) as server, ClientSession() as session:
        endpoint = str(server.make_url("/raw")) + "?url="
        fetcher = FeedFetcher(session, max_retries=0, timeout=5, proxy_endpoint=endpoint)
        feed = await fetcher.fetch(origin)

    assert seen == [origin]
    assert feed.title == "Example Feed"
