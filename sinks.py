#!/usr/bin/env python3
"""
Output sinks for an ``AggregateResult``.

``RenderSink`` turns a result into the viewer's HTML page with Jinja2.
``SnapshotSink`` writes the JSON snapshot consumed by downstream readers.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import config, get_logger
from errors import WriteError
from models import AggregateResult, NormalizedItem
from telemetry import trace_span
from utils import isoformat_utc

logger = get_logger("sinks")

EMPTY_STATUS = "No items in this time range."


def _template_env(templates_path: Optional[str] = None) -> Environment:
    env = Environment(
        loader=FileSystemLoader(templates_path or config.TEMPLATES_PATH),
        autoescape=select_autoescape(["html"]),
    )
    env.filters["isodate"] = isoformat_utc
    return env


class RenderSink:
    """Render results for display."""

    def __init__(self, template: str = "feeds.html", templates_path: Optional[str] = None) -> None:
        self.env = _template_env(templates_path)
        self.template_name = template

    def status_message(self, result: AggregateResult) -> str:
        if not result.items:
            return EMPTY_STATUS
        feeds = "feed" if result.feed_count == 1 else "feeds"
        items = "item" if result.item_count == 1 else "items"
        return f"Showing {result.item_count} {items} from {result.feed_count} {feeds}"

    def render(
        self,
        result: Optional[AggregateResult],
        *,
        hours: int,
        hour_choices: Sequence[int],
        status: Optional[str] = None,
        progress: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Render the viewer page. ``result`` is None before anything was loaded."""
        if status is None:
            status = self.status_message(result) if result is not None else "Upload an OPML file to load feeds."
        template = self.env.get_template(self.template_name)
        return template.render(
            result=result,
            items=result.items if result is not None else (),
            hours=hours,
            hour_choices=list(hour_choices),
            status=status,
            progress=progress or {},
        )


def snapshot_item(item: NormalizedItem) -> Dict[str, Any]:
    iso = isoformat_utc(item.published_at)
    return {
        "title": item.title,
        "link": item.link,
        "isoDate": iso,
        "pubDate": iso,
        "contentSnippet": item.summary,
        "content": item.content,
        "guid": item.guid,
        "source": item.source,
        "feedUrl": item.feed_url,
    }


def snapshot_document(result: AggregateResult) -> Dict[str, Any]:
    return {
        "fetched_at": isoformat_utc(result.fetched_at),
        "feed_count": result.feed_count,
        "items_count": result.matched_count,
        "items": [snapshot_item(item) for item in result.items],
    }


class SnapshotSink:
    """Persist a result as a JSON snapshot file."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)

    @trace_span(
        "snapshot.write",
        tracer_name="sinks",
        attr_from_args=lambda self, result: {
            "snapshot.path": str(self.path),
            "snapshot.items": result.item_count,
        },
    )
    def write(self, result: AggregateResult) -> Path:
        """Write the snapshot atomically.

        Raises:
            WriteError: If the file cannot be written.
        """
        payload = json.dumps(snapshot_document(result), indent=2, ensure_ascii=False)
        temp_path = None
        try:
            out_dir = self.path.parent
            out_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', suffix='.json',
                                             dir=out_dir, delete=False) as temp_file:
                temp_path = temp_file.name
                temp_file.write(payload)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            if temp_path and os.path.exists(temp_path):
                os.unlink(temp_path)
            raise WriteError(str(self.path), str(e)) from e

        logger.info(f"Wrote snapshot {self.path} ({result.item_count} items)")
        return self.path
