"""Schedule trigger evaluation backed by ``croniter``."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from ..constants import DEFAULT_MONTHLY_DAY, DEFAULT_SCHEDULE_TIME, DEFAULT_WEEKLY_DAY
from ..models import ScheduleTriggerConfig, as_utc


def schedule_timezone(config: ScheduleTriggerConfig) -> ZoneInfo:
    return ZoneInfo(config.timezone or "UTC")


def schedule_expression(config: ScheduleTriggerConfig) -> str:
    """Cron expression equivalent to ``config``.

    Daily, weekly and monthly schedules fire at ``time`` (default 09:00);
    weekly ones on ``day_of_week`` (default Monday) and monthly ones on
    ``day_of_month`` (default the 1st).
    """
    if config.schedule_type == "cron":
        return config.cron or ""
    hour, minute = (int(part) for part in (config.time or DEFAULT_SCHEDULE_TIME).split(":"))
    if config.schedule_type == "daily":
        return f"{minute} {hour} * * *"
    if config.schedule_type == "weekly":
        day = config.day_of_week if config.day_of_week is not None else DEFAULT_WEEKLY_DAY
        return f"{minute} {hour} * * {day}"
    day = config.day_of_month if config.day_of_month is not None else DEFAULT_MONTHLY_DAY
    return f"{minute} {hour} {day} * *"


def is_valid_schedule(config: ScheduleTriggerConfig) -> bool:
    if not croniter.is_valid(schedule_expression(config)):
        return False
    try:
        schedule_timezone(config)
    except (KeyError, ValueError):
        return False
    return True


def due_occurrence(
    config: ScheduleTriggerConfig,
    now: datetime,
    grace: timedelta = timedelta(minutes=5),
) -> Optional[datetime]:
    """The latest occurrence at or before ``now`` if it is within ``grace``.

    ``now`` must be timezone-aware; naive values are taken as UTC. The
    occurrence is returned in the schedule's timezone.
    """
    local_now = as_utc(now).astimezone(schedule_timezone(config))
    # croniter excludes the start instant itself, so nudge past it
    occurrence = croniter(
        schedule_expression(config), local_now + timedelta(seconds=1)
    ).get_prev(datetime)
    if local_now - occurrence > grace:
        return None
    return occurrence
