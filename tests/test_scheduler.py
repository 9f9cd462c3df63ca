import asyncio
from datetime import datetime, timezone

import pytest

import scheduler
from errors import WriteError
from scheduler import BatchScheduler, ScheduleEntry


@pytest.mark.parametrize("value", ["25:00", "12:60", "noon", "12", "1:2:3"])
def test_invalid_times_are_rejected(value):
    with pytest.raises(ValueError):
        ScheduleEntry(value)


def test_next_occurrence_same_day_and_next_day():
    entry = ScheduleEntry("06:30")
    morning = datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)
    evening = datetime(2024, 1, 1, 19, 0, tzinfo=timezone.utc)
    assert entry.next_occurrence(morning) == datetime(2024, 1, 1, 6, 30, tzinfo=timezone.utc)
    assert entry.next_occurrence(evening) == datetime(2024, 1, 2, 6, 30, tzinfo=timezone.utc)


def test_next_occurrence_is_strictly_after_reference():
    entry = ScheduleEntry("06:30")
    exact = datetime(2024, 1, 1, 6, 30, tzinfo=timezone.utc)
    assert entry.next_occurrence(exact) == datetime(2024, 1, 2, 6, 30, tzinfo=timezone.utc)


def test_scheduler_picks_earliest_upcoming_time():
    scheduler = BatchScheduler(times=["18:30", "06:30", "bogus"], timezone_name="UTC")
    assert [e.time_str for e in scheduler.entries] == ["18:30", "06:30"]

    noon = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert scheduler.get_next_run_time(noon) == datetime(2024, 1, 1, 18, 30, tzinfo=timezone.utc)
    assert scheduler.seconds_until_next_run(noon) == 6.5 * 3600


def test_invalid_timezone_falls_back_to_utc():
    scheduler = BatchScheduler(times=["06:30"], timezone_name="Not/AZone")
    assert scheduler.timezone_name == "UTC"


def test_empty_schedule_is_inactive():
    scheduler = BatchScheduler(times=[], timezone_name="UTC")
    assert not scheduler.active
    assert scheduler.get_next_run_time() is None
    status = scheduler.get_schedule_status()
    assert status["schedule_active"] is False
    assert status["next_run_time"] is None


@pytest.mark.asyncio
async def test_run_forever_without_schedule_returns():
    calls = []

    async def job():
        calls.append(1)

    await BatchScheduler(times=[], timezone_name="UTC").run_forever(job, run_immediately=True)
    assert calls == []


@pytest.mark.asyncio
async def test_failed_run_is_logged_not_raised():
    scheduler = BatchScheduler(times=["06:30"], timezone_name="UTC")

    async def failing_job():
        raise WriteError("/readonly/feeds.json", "Permission denied")

    async def ok_job():
        return None

    assert await scheduler._run_job(failing_job) is False
    assert await scheduler._run_job(ok_job) is True


@pytest.mark.asyncio
async def test_unexpected_error_in_run_is_logged_not_raised():
    scheduler = BatchScheduler(times=["06:30"], timezone_name="UTC")

    async def crashing_job():
        raise RuntimeError("network stack exploded")

    assert await scheduler._run_job(crashing_job) is False


@pytest.mark.asyncio
async def test_scheduler_keeps_running_after_a_crashed_run(monkeypatch):
    calls = []

    async def fake_sleep(delay):
        return None

    async def job():
        calls.append(len(calls) + 1)
        if len(calls) == 1:
            raise RuntimeError("network stack exploded")
        # Stop the loop once the second slot has run
        raise asyncio.CancelledError()

    monkeypatch.setattr(scheduler.asyncio, "sleep", fake_sleep)
    with pytest.raises(asyncio.CancelledError):
        await BatchScheduler(times=["06:30"], timezone_name="UTC").run_forever(job, run_immediately=False)

    assert calls == [1, 2]
