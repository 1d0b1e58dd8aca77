from datetime import date, datetime, timedelta, timezone
from typing import Mapping
from zoneinfo import ZoneInfo

from nycping.core.entities import Slot

NYC_TZ = "America/New_York"


def local_now(tz: str = NYC_TZ, now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(tz))


def local_day(now: datetime, tz: str = NYC_TZ) -> date:
    """Calendar day in the city's timezone; send records are keyed by it."""
    return local_now(tz, now).date()


def current_slot(now: datetime, tz: str = NYC_TZ) -> Slot:
    hour = local_now(tz, now).hour
    if hour < 11:
        return Slot.MORNING
    if hour < 16:
        return Slot.MIDDAY
    return Slot.EVENING


def next_run_time(slot: Slot, hours: Mapping[Slot, int], now: datetime, tz: str = NYC_TZ) -> datetime:
    local = local_now(tz, now)
    run = local.replace(hour=hours[slot], minute=0, second=0, microsecond=0)
    if run <= local:
        run += timedelta(days=1)
    return run


def in_quiet_hours(now: datetime, start: int = 22, end: int = 7, tz: str = NYC_TZ) -> bool:
    """Quiet window wraps midnight when start > end."""
    hour = local_now(tz, now).hour
    if start == end:
        return False
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end
