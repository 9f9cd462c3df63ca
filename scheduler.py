#!/usr/bin/env python3
"""
Time-of-day scheduler for periodic snapshot runs.

Runs the batch job at each time listed in SCHEDULE_TIMES ("06:30,18:30"),
interpreted in SCHEDULER_TIMEZONE. A failed run is logged and the scheduler
carries on with the next slot.
"""

import asyncio
from datetime import datetime, time, timedelta, timezone, tzinfo
from time import monotonic
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import config, get_logger
from errors import ParseError, WriteError
from telemetry import trace_span
from utils import format_duration

logger = get_logger("scheduler")


class ScheduleEntry:
    """A single daily run time."""

    def __init__(self, time_str: str):
        """
        Raises:
            ValueError: If the time is not HH:MM within range.
        """
        self.time_str = str(time_str).strip().strip('"\'')
        self.time = self._parse_time(self.time_str)

    @staticmethod
    def _parse_time(time_str: str) -> time:
        parts = time_str.split(':')
        if len(parts) != 2:
            raise ValueError(f"Time must be in HH:MM format, got: {time_str!r}")
        try:
            hour, minute = int(parts[0]), int(parts[1])
        except ValueError:
            raise ValueError(f"Time must be in HH:MM format, got: {time_str!r}") from None
        if not (0 <= hour <= 23):
            raise ValueError(f"Hour must be 0-23, got: {hour}")
        if not (0 <= minute <= 59):
            raise ValueError(f"Minute must be 0-59, got: {minute}")
        return time(hour=hour, minute=minute)

    def next_occurrence(self, from_time: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> datetime:
        """Next occurrence strictly after ``from_time``, returned in UTC."""
        tz = tz or timezone.utc
        from_time = from_time or datetime.now(timezone.utc)
        ref_local = from_time.astimezone(tz)
        candidate = datetime.combine(ref_local.date(), self.time, tzinfo=tz)
        if candidate <= ref_local:
            candidate = datetime.combine(ref_local.date() + timedelta(days=1), self.time, tzinfo=tz)
        return candidate.astimezone(timezone.utc)

    def __repr__(self) -> str:
        return f"ScheduleEntry({self.time_str})"


class BatchScheduler:
    """Run an async job at the configured daily times."""

    def __init__(self, times: Optional[Sequence[str]] = None, timezone_name: Optional[str] = None):
        self.timezone_name = timezone_name or config.SCHEDULER_TIMEZONE or "UTC"
        try:
            self.timezone: tzinfo = ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Invalid timezone '{self.timezone_name}', falling back to UTC")
            self.timezone_name = "UTC"
            self.timezone = timezone.utc

        self.entries: List[ScheduleEntry] = []
        for raw in (config.SCHEDULE_TIMES if times is None else times):
            try:
                self.entries.append(ScheduleEntry(raw))
            except ValueError as e:
                logger.error(f"Ignoring schedule entry {raw!r}: {e}")

    @property
    def active(self) -> bool:
        return bool(self.entries)

    def get_next_run_time(self, from_time: Optional[datetime] = None) -> Optional[datetime]:
        if not self.entries:
            return None
        from_time = from_time or datetime.now(timezone.utc)
        return min(entry.next_occurrence(from_time, self.timezone) for entry in self.entries)

    def seconds_until_next_run(self, from_time: Optional[datetime] = None) -> Optional[float]:
        from_time = from_time or datetime.now(timezone.utc)
        next_run = self.get_next_run_time(from_time)
        if next_run is None:
            return None
        return (next_run - from_time).total_seconds()

    def get_schedule_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        next_run = self.get_next_run_time(now)
        seconds_until = self.seconds_until_next_run(now)
        return {
            'current_time': now.isoformat(),
            'schedule_times': [entry.time_str for entry in self.entries],
            'schedule_timezone': self.timezone_name,
            'schedule_active': self.active,
            'next_run_time': next_run.isoformat() if next_run else None,
            'minutes_until_next_run': round(seconds_until / 60, 1) if seconds_until is not None else None,
        }

    def print_schedule_status(self) -> None:
        status = self.get_schedule_status()
        print("\nScheduler Status")
        print(f"Current time: {status['current_time']}")
        print(f"Timezone: {status['schedule_timezone']}")
        if status['schedule_active']:
            print(f"Scheduled times: {', '.join(status['schedule_times'])}")
            print(f"Next run: {status['next_run_time']} (in {status['minutes_until_next_run']} minutes)")
        else:
            print("No schedule configured (set SCHEDULE_TIMES)")

    async def run_forever(self, job: Callable[[], Awaitable[Any]], run_immediately: Optional[bool] = None) -> None:
        """Run ``job`` at every scheduled time until cancelled."""
        if not self.active:
            logger.error("No schedule configured - cannot run in scheduled mode")
            return

        times = ", ".join(entry.time_str for entry in self.entries)
        logger.info(f"Starting scheduler ({self.timezone_name}): {times}")

        if config.SCHEDULER_RUN_IMMEDIATELY if run_immediately is None else run_immediately:
            logger.info("Running batch immediately on startup")
            await self._run_job(job)

        while True:
            try:
                next_time = self.get_next_run_time()
                sleep_time = max(1.0, (next_time - datetime.now(timezone.utc)).total_seconds() + 1)
                logger.info(f"Sleeping {format_duration(sleep_time)} until next run at {next_time.isoformat()}")
                await asyncio.sleep(sleep_time)
                await self._run_job(job)
            except asyncio.CancelledError:
                logger.info("Scheduler cancelled - shutting down")
                raise

    @trace_span("scheduler.run", tracer_name="scheduler")
    async def _run_job(self, job: Callable[[], Awaitable[Any]]) -> bool:
        start = monotonic()
        try:
            await job()
        except (ParseError, WriteError) as e:
            logger.error(f"Scheduled run failed after {format_duration(monotonic() - start)}: {e}")
            return False
        except Exception as e:
            logger.error(f"💥 Error in scheduled run after {format_duration(monotonic() - start)}: {e}", exc_info=True)
            return False
        logger.info(f"Scheduled run completed in {format_duration(monotonic() - start)}")
        return True


def create_scheduler() -> BatchScheduler:
    """Create a scheduler from the current configuration."""
    return BatchScheduler()
