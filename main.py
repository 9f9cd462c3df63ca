#!/usr/bin/env python3
"""
Feed Aggregator entry point.

Modes:
- batch: read the OPML file, fetch every feed and write one JSON snapshot
- scheduled: run batch at the configured SCHEDULE_TIMES
- serve: start the interactive viewer
- schedule-status: print the next scheduled run
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from aggregator import run_batch
from config import config, get_logger
from errors import ParseError, WriteError
from scheduler import create_scheduler
from viewer import serve

logger = get_logger("main")

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_READ_FAILURE = 2
EXIT_WRITE_FAILURE = 3


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='OPML feed aggregator')
    subparsers = parser.add_subparsers(dest='mode', required=True)

    batch_parser = subparsers.add_parser('batch', help='Write one JSON snapshot and exit')
    batch_parser.add_argument('--opml', help=f'OPML file (default: {config.OPML_FILE})')
    batch_parser.add_argument('--output', help=f'Snapshot file (default: {config.OUTPUT_FILE})')
    batch_parser.add_argument('--days', type=_positive_int, help=f'Recency window in days (default: {config.MAX_DAYS})')
    batch_parser.add_argument('--concurrency', type=_positive_int,
                              help=f'Maximum in-flight fetches (default: {config.CONCURRENCY})')

    subparsers.add_parser('scheduled', help='Run batch at the configured SCHEDULE_TIMES')

    serve_parser = subparsers.add_parser('serve', help='Start the interactive viewer')
    serve_parser.add_argument('--host', help=f'Bind address (default: {config.VIEWER_HOST})')
    serve_parser.add_argument('--port', type=_positive_int, help=f'Port (default: {config.VIEWER_PORT})')
    serve_parser.add_argument('--opml', help='OPML file to load on startup')

    subparsers.add_parser('schedule-status', help='Show the next scheduled run')
    return parser


def run_batch_mode(args: argparse.Namespace) -> int:
    try:
        asyncio.run(run_batch(
            opml_file=args.opml,
            output_file=args.output,
            days=args.days,
            concurrency=args.concurrency,
        ))
    except ParseError as e:
        logger.error(f"❌ Could not read OPML: {e}")
        return EXIT_READ_FAILURE
    except WriteError as e:
        logger.error(f"❌ Could not write snapshot: {e}")
        return EXIT_WRITE_FAILURE
    return EXIT_OK


async def run_scheduled_mode() -> None:
    scheduler = create_scheduler()
    if not scheduler.active:
        logger.error("❌ No schedule configured")
        logger.info("💡 Set SCHEDULE_TIMES, e.g. SCHEDULE_TIMES=06:30,18:30")
        return
    await scheduler.run_forever(run_batch)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logger.debug(f"Configuration: {config.get_config_summary()}")

    try:
        if args.mode == 'batch':
            return run_batch_mode(args)

        if args.mode == 'scheduled':
            asyncio.run(run_scheduled_mode())
        elif args.mode == 'serve':
            serve(host=args.host, port=args.port, opml_file=args.opml)
        elif args.mode == 'schedule-status':
            create_scheduler().print_schedule_status()
    except KeyboardInterrupt:
        logger.info("👋 Shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        return EXIT_UNEXPECTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
