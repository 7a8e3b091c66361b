"""Service-day arithmetic.

A service day runs from the boundary hour (08:00 by default) to the same hour
on the next calendar day, in the operation's local timezone. Everything that
depends on "today" takes the current time as an argument so it can be driven by
a fake clock.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from ..config import settings

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_local(moment: datetime, tz_name: str | None = None) -> datetime:
    """Convert to the service timezone; naive datetimes are taken as local already."""
    tz = ZoneInfo(tz_name or settings.service_timezone)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def service_day(moment: datetime, *, boundary_hour: int | None = None, tz_name: str | None = None) -> date:
    hour = settings.service_day_start_hour if boundary_hour is None else boundary_hour
    local = to_local(moment, tz_name)
    return (local - timedelta(hours=hour)).date()


def service_day_start(moment: datetime, *, boundary_hour: int | None = None, tz_name: str | None = None) -> datetime:
    hour = settings.service_day_start_hour if boundary_hour is None else boundary_hour
    local = to_local(moment, tz_name)
    day = service_day(local, boundary_hour=hour, tz_name=tz_name)
    return datetime.combine(day, time(hour=hour), tzinfo=local.tzinfo)


def next_service_day_start(moment: datetime, *, boundary_hour: int | None = None, tz_name: str | None = None) -> datetime:
    return service_day_start(moment, boundary_hour=boundary_hour, tz_name=tz_name) + timedelta(days=1)
