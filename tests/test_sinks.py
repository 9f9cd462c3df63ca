import json
from datetime import datetime, timezone

import pytest

from errors import WriteError
from models import NO_LINK, AggregateResult, NormalizedItem
from sinks import EMPTY_STATUS, RenderSink, SnapshotSink, snapshot_document

FETCHED_AT = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def sample_result():
    items = (
        NormalizedItem(
            title="Dated <b>post</b>",
            link="https://example.com/1",
            published_at=datetime(2024, 6, 1, 10, 30, tzinfo=timezone.utc),
            source="Example",
            feed_url="https://example.com/feed",
            guid="guid-1",
            summary="Summary text",
            content="<p>Full</p>",
        ),
        NormalizedItem(
            title="Linkless",
            link=NO_LINK,
            published_at=None,
            source="Example",
            feed_url="https://example.com/feed",
        ),
    )
    return AggregateResult(items=items, fetched_at=FETCHED_AT, feed_count=3)


def test_snapshot_document_shape():
    document = snapshot_document(sample_result())
    assert document["fetched_at"] == "2024-06-01T12:00:00.000Z"
    assert document["feed_count"] == 3
    assert document["items_count"] == 2
    first, second = document["items"]
    assert first == {
        "title": "Dated <b>post</b>",
        "link": "https://example.com/1",
        "isoDate": "2024-06-01T10:30:00.000Z",
        "pubDate": "2024-06-01T10:30:00.000Z",
        "contentSnippet": "Summary text",
        "content": "<p>Full</p>",
        "guid": "guid-1",
        "source": "Example",
        "feedUrl": "https://example.com/feed",
    }
    assert second["link"] == NO_LINK
    assert second["isoDate"] is None


def test_snapshot_write_is_atomic(tmp_path):
    target = tmp_path / "nested" / "feeds.json"
    written = SnapshotSink(str(target)).write(sample_result())

    assert written == target
    assert json.loads(target.read_text(encoding="utf-8"))["items_count"] == 2
    assert [p.name for p in target.parent.iterdir()] == ["feeds.json"]


def test_snapshot_write_replaces_existing_file(tmp_path):
    target = tmp_path / "feeds.json"
    target.write_text("old", encoding="utf-8")
    SnapshotSink(str(target)).write(sample_result())
    assert json.loads(target.read_text(encoding="utf-8"))["feed_count"] == 3


def test_snapshot_write_failure_raises_write_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not directory", encoding="utf-8")
    with pytest.raises(WriteError) as excinfo:
        SnapshotSink(str(blocker / "feeds.json")).write(sample_result())
    assert excinfo.value.path == str(blocker / "feeds.json")


def test_status_message():
    sink = RenderSink()
    assert sink.status_message(sample_result()) == "Showing 2 items from 3 feeds"
    empty = AggregateResult(items=(), fetched_at=FETCHED_AT, feed_count=1)
    assert sink.status_message(empty) == EMPTY_STATUS


def test_render_escapes_titles_and_marks_selected_window():
    html = RenderSink().render(sample_result(), hours=24, hour_choices=[1, 6, 24])
    assert "Dated &lt;b&gt;post&lt;/b&gt;" in html
    assert '<option value="24" selected>' in html
    assert "Showing 2 items from 3 feeds" in html
    assert "undated" in html


def test_render_empty_window():
    empty = AggregateResult(items=(), fetched_at=FETCHED_AT, feed_count=1)
    html = RenderSink().render(empty, hours=1, hour_choices=[1, 24])
    assert EMPTY_STATUS in html
    assert 'class="feed-item"' not in html


def test_render_progress_replaces_status():
    html = RenderSink().render(
        None,
        hours=24,
        hour_choices=[24],
        progress={"running": True, "message": "Loaded 2/5 feeds..."},
    )
    assert "Loaded 2/5 feeds..." in html
    assert 'http-equiv="refresh"' in html


def test_snapshot_write_onto_directory_raises_write_error(tmp_path):
    target = tmp_path / "feeds.json"
    target.mkdir()
    with pytest.raises(WriteError):
        SnapshotSink(str(target)).write(sample_result())
    assert list(target.iterdir()) == []
    assert [p.name for p in tmp_path.iterdir()] == ["feeds.json"]


def test_items_count_reports_matches_before_cap():
    capped = AggregateResult(items=sample_result().items, fetched_at=FETCHED_AT, feed_count=3, total_count=2500)
    document = snapshot_document(capped)
    assert document["items_count"] == 2500
    assert len(document["items"]) == 2
