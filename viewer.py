#!/usr/bin/env python3
"""
Interactive feed viewer.

A small aiohttp.web application: upload an OPML file, pick a recency window in hours
and browse the aggregated items. Loading runs in the background and reports
"Loaded X/Y feeds..." through ``/status``; the page re-filters the last collection
when the window changes, without fetching again.

Routes:
- GET  /        page with controls, status line and item list (?hours=N)
- POST /upload  multipart field ``opml``
- GET  /status  JSON progress
"""

from asyncio import Task, create_task
from dataclasses import dataclass, field
from functools import partial
from os import path
from typing import Any, Dict, Optional, Sequence

from aiohttp import ClientSession, web

from aggregator import Aggregator, finalize, interactive_policy
from config import config, get_logger
from errors import ParseError
from fetcher import FeedFetcher
from models import Collection, FeedDescriptor, FeedResult
from opml import parse_opml, read_opml_file
from sinks import RenderSink

logger = get_logger("viewer")

_CONFIGURED = object()


@dataclass
class ViewerState:
    """UI-local state: the last collection and the progress of the current load."""
    collection: Optional[Collection] = None
    error: Optional[str] = None
    task: Optional[Task] = None
    progress: Dict[str, Any] = field(default_factory=lambda: {
        "loaded": 0, "total": 0, "running": False, "message": "",
    })

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()


STATE = web.AppKey("state", ViewerState)
SESSION = web.AppKey("session", ClientSession)
SINK = web.AppKey("sink", RenderSink)
SETTINGS = web.AppKey("settings", dict)


def _selected_hours(request: web.Request, choices: Sequence[int], default: int) -> int:
    raw = request.query.get("hours")
    try:
        hours = int(raw) if raw is not None else default
    except ValueError:
        return default
    return hours if hours in choices else default


async def _load(app: web.Application, descriptors: Sequence[FeedDescriptor]) -> None:
    state = app[STATE]
    total = len(descriptors)
    state.progress = {"loaded": 0, "total": total, "running": True, "message": f"Loaded 0/{total} feeds..."}

    def on_progress(done: int, total: int, result: FeedResult) -> None:
        state.progress = {
            "loaded": done,
            "total": total,
            "running": True,
            "message": f"Loaded {done}/{total} feeds...",
        }

    fetcher = FeedFetcher(app[SESSION], proxy_endpoint=app[SETTINGS]["proxy_endpoint"])
    aggregator = Aggregator(fetcher, concurrency=app[SETTINGS]["concurrency"], on_progress=on_progress)
    try:
        state.collection = await aggregator.collect(descriptors)
        state.error = None
    finally:
        state.progress = dict(state.progress, running=False, message="")
    failed = len(state.collection.failed)
    logger.info(f"Loaded {total - failed}/{total} feeds ({len(state.collection.items)} items)")


def _on_load_done(app: web.Application, task: Task) -> None:
    if task.cancelled():
        logger.info("Feed load cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Feed load failed: {error}", exc_info=error)
        app[STATE].error = f"Loading feeds failed: {error}"


def start_load(app: web.Application, descriptors: Sequence[FeedDescriptor]) -> Task:
    state = app[STATE]
    state.task = create_task(_load(app, descriptors))
    state.task.add_done_callback(partial(_on_load_done, app))
    return state.task


async def index(request: web.Request) -> web.Response:
    app = request.app
    settings = app[SETTINGS]
    state = app[STATE]
    hours = _selected_hours(request, settings["hour_choices"], settings["default_hours"])

    result = None
    status = None
    if state.error:
        status = state.error
    elif state.collection is not None:
        result = finalize(state.collection, interactive_policy(hours))
        status = app[SINK].status_message(result)
        if state.collection.failed:
            status += f" ({len(state.collection.failed)} of {state.collection.feed_count} feeds failed)"

    html = app[SINK].render(
        result,
        hours=hours,
        hour_choices=settings["hour_choices"],
        status=status,
        progress=state.progress,
    )
    return web.Response(text=html, content_type="text/html")


async def upload(request: web.Request) -> web.Response:
    app = request.app
    state = app[STATE]
    post = await request.post()
    hours = post.get("hours")
    location = f"/?hours={hours}" if isinstance(hours, str) and hours.isdigit() else "/"

    if state.running:
        logger.info("Ignoring upload while a load is in progress")
        raise web.HTTPSeeOther(location)

    opml_field = post.get("opml")
    if not isinstance(opml_field, web.FileField):
        state.error = "No OPML file selected."
        raise web.HTTPSeeOther(location)

    try:
        descriptors = parse_opml(opml_field.file.read())
    except ParseError as e:
        logger.warning(f"Rejected uploaded OPML {opml_field.filename}: {e}")
        state.collection = None
        state.error = f"Could not read {opml_field.filename}: {e}"
        raise web.HTTPSeeOther(location)

    logger.info(f"Uploaded {opml_field.filename} with {len(descriptors)} feeds")
    state.error = None
    start_load(app, descriptors)
    raise web.HTTPSeeOther(location)


async def status(request: web.Request) -> web.Response:
    return web.json_response(request.app[STATE].progress)


async def _on_startup(app: web.Application) -> None:
    app[SESSION] = ClientSession()
    opml_file = app[SETTINGS]["opml_file"]
    if not opml_file or not path.isfile(opml_file):
        logger.info(f"Auto-load skipped: no OPML file at {opml_file}")
        return
    try:
        descriptors = read_opml_file(opml_file)
    except ParseError as e:
        logger.warning(f"Auto-load skipped: {e}")
        app[STATE].error = str(e)
        return
    logger.info(f"Auto-loading {len(descriptors)} feeds from {opml_file}")
    start_load(app, descriptors)


async def _on_cleanup(app: web.Application) -> None:
    task = app[STATE].task
    if task is not None and not task.done():
        task.cancel()
    await app[SESSION].close()


def create_app(
    *,
    opml_file: Optional[str] = None,
    proxy_endpoint: Any = _CONFIGURED,
    concurrency: Optional[int] = None,
    templates_path: Optional[str] = None,
) -> web.Application:
    """Build the viewer application.

    Args:
        opml_file: OPML file loaded on startup when it exists (default: config.OPML_FILE)
        proxy_endpoint: Proxy endpoint for feed requests; None fetches directly
            (default: config.INTERACTIVE_PROXY_URL)
        concurrency: Maximum in-flight fetches (default: config.CONCURRENCY)
        templates_path: Jinja2 template directory (default: config.TEMPLATES_PATH)
    """
    app = web.Application()
    app[STATE] = ViewerState()
    app[SINK] = RenderSink(templates_path=templates_path)
    app[SETTINGS] = {
        "opml_file": config.OPML_FILE if opml_file is None else opml_file,
        "proxy_endpoint": config.INTERACTIVE_PROXY_URL if proxy_endpoint is _CONFIGURED else proxy_endpoint,
        "concurrency": concurrency or config.CONCURRENCY,
        "hour_choices": list(config.VIEWER_HOUR_CHOICES),
        "default_hours": config.VIEWER_DEFAULT_HOURS,
    }
    app.router.add_get("/", index)
    app.router.add_post("/upload", upload)
    app.router.add_get("/status", status)
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def serve(host: Optional[str] = None, port: Optional[int] = None, opml_file: Optional[str] = None) -> None:
    """Run the viewer until interrupted."""
    host = host or config.VIEWER_HOST
    port = port or config.VIEWER_PORT
    logger.info(f"Serving feed viewer on http://{host}:{port}/")
    web.run_app(create_app(opml_file=opml_file), host=host, port=port, print=None)
