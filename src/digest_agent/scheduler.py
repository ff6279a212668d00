from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta
from datetime import timezone as dt_timezone
from typing import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from digest_agent.config import Settings
from digest_agent.errors import ConfigError
from digest_agent.pipeline.trigger import RunTrigger

logger = logging.getLogger(__name__)


def parse_time_of_day(value: str) -> time:
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except ValueError as exc:
        raise ConfigError(f"Invalid schedule time {value!r}, expected HH:MM") from exc


def resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone {name!r}") from exc


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(dt_timezone.utc)


def _wall_clock(day: date, target: time, zone: ZoneInfo) -> datetime:
    # a UTC round trip resolves skipped (spring) and repeated (autumn) local times
    return _as_utc(datetime.combine(day, target, tzinfo=zone)).astimezone(zone)


def compute_next_run(time_of_day: str, timezone: str, now: datetime) -> datetime:
    """Next occurrence of ``time_of_day`` in ``timezone`` strictly after ``now``.

    ``now`` must be timezone-aware. The result is aware, in ``timezone``.
    Instants are compared in UTC, so the repeated hour of a DST fall-back
    never yields a time that has already passed.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    zone = resolve_timezone(timezone)
    target = parse_time_of_day(time_of_day)
    local_now = now.astimezone(zone)

    candidate = _wall_clock(local_now.date(), target, zone)
    if _as_utc(candidate) <= _as_utc(now):
        candidate = _wall_clock(local_now.date() + timedelta(days=1), target, zone)
    return candidate


class DailyScheduler:
    """Fires the run trigger once a day at the configured wall-clock time.

    The schedule is recomputed on every wake-up, so a changed
    ``schedule_time`` or ``schedule_timezone`` re-arms the next run.
    """

    def __init__(
        self,
        trigger: RunTrigger,
        settings_provider: Callable[[], Settings],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.trigger = trigger
        self.settings_provider = settings_provider
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.next_run: datetime | None = None

    def arm(self) -> datetime:
        settings = self.settings_provider()
        next_run = compute_next_run(settings.schedule_time, settings.schedule_timezone, self.clock())
        if next_run != self.next_run:
            logger.info("Next scheduled run at %s", next_run.isoformat())
        self.next_run = next_run
        return next_run

    def fire(self) -> None:
        result = self.trigger.trigger()
        if result.started:
            logger.info("Scheduled run %s started", result.run_id)
        else:
            logger.info("Scheduled run skipped, %s still in progress", result.run_id)

    async def serve(self) -> None:
        next_run = self.arm()
        while True:
            remaining = (_as_utc(next_run) - _as_utc(self.clock())).total_seconds()
            if remaining <= 0:
                try:
                    self.fire()
                except Exception:
                    logger.exception("Scheduled trigger failed")
                next_run = self.arm()
                continue

            poll_seconds = max(1, self.settings_provider().scheduler_poll_seconds)
            await asyncio.sleep(min(remaining, poll_seconds))
            if _as_utc(self.clock()) < _as_utc(next_run):
                next_run = self.arm()
