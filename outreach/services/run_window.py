"""
Allowed run-hour window of automated campaigns.

The window is [run_start_hour, run_end_hour) in the campaign timezone
(`EngineConfig.timezone`, UTC by default). A start later than the end
wraps midnight (e.g. 22 -> 6). Unset hours, or equal hours, mean the
window is always open.

Datetimes passed in and returned are naive UTC, as stored in the database.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

TZ_UTC = timezone.utc


def to_local(moment: datetime, tz: str = "UTC") -> datetime:
    """Naive UTC datetime -> aware datetime in `tz`"""
    aware = moment.replace(tzinfo=TZ_UTC)
    return aware if tz == "UTC" else aware.astimezone(ZoneInfo(tz))


def to_utc(moment: datetime) -> datetime:
    """Aware datetime -> naive UTC"""
    return moment.astimezone(TZ_UTC).replace(tzinfo=None)


def has_window(start_hour: Optional[int], end_hour: Optional[int]) -> bool:
    return start_hour is not None and end_hour is not None and start_hour != end_hour


def is_within_run_window(start_hour: Optional[int], end_hour: Optional[int], hour: int) -> bool:
    if not has_window(start_hour, end_hour):
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def is_open_at(start_hour: Optional[int], end_hour: Optional[int], moment: datetime, tz: str = "UTC") -> bool:
    """Whether the window is open at the naive UTC `moment`"""
    if not has_window(start_hour, end_hour):
        return True
    return is_within_run_window(start_hour, end_hour, to_local(moment, tz).hour)


def calculate_next_run_time(
    start_hour: Optional[int],
    end_hour: Optional[int],
    base: datetime,
    tz: str = "UTC"
) -> datetime:
    """`base` if the window is open then, else the window's next opening"""
    if not has_window(start_hour, end_hour):
        return base

    local = to_local(base, tz)
    if is_within_run_window(start_hour, end_hour, local.hour):
        return base

    opening = local.replace(hour=start_hour, minute=0, second=0, microsecond=0)
    if local.hour >= start_hour:
        opening += timedelta(days=1)
    return to_utc(opening)
