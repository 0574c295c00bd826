"""Time utilities. Stored timestamps are UTC; day boundaries are local."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_today(now: datetime, tz_name: str) -> date:
    """Calendar date of `now` in the given zone."""
    return now.astimezone(ZoneInfo(tz_name)).date()


def local_day_start(now: datetime, tz_name: str) -> datetime:
    """Local midnight of the day containing `now`, as an aware UTC datetime."""
    zone = ZoneInfo(tz_name)
    local = now.astimezone(zone)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)
