"""
Time-window derivation and next-prayer selection

A search window starts at the requested time and ends ``offset_minutes``
later, wrapping past midnight when needed. The same arithmetic backs the
prayer-time search and the "next prayer" shown for a mosque.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Union

from ..common.errors import ValidationError
from ..common.models import (
    MANDATORY_SLOTS, AzanSchedule, PrayerSchedule, PrayerTime, TimeOfDay
)

DEFAULT_OFFSET_MINUTES = 90
FRIDAY = 4

TimeLike = Union[TimeOfDay, str]


@dataclass(frozen=True)
class TimeWindow:
    """A time-of-day interval; ``end`` may precede ``start`` across midnight"""
    start: TimeOfDay
    end: TimeOfDay

    @property
    def crosses_midnight(self) -> bool:
        return self.end.minute_of_day < self.start.minute_of_day

    def contains(self, time: TimeOfDay) -> bool:
        """True if ``time`` falls inside the window, both ends inclusive"""
        t = time.minute_of_day
        start, end = self.start.minute_of_day, self.end.minute_of_day
        if self.crosses_midnight:
            return t >= start or t <= end
        return start <= t <= end

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


def parse_time(value: TimeLike) -> TimeOfDay:
    """Coerce an ``HH:MM`` string or a TimeOfDay, rejecting anything out of range"""
    if isinstance(value, TimeOfDay):
        # model_construct() skips validation, so check the range here too
        if not (0 <= value.hours <= 23 and 0 <= value.minutes <= 59):
            raise ValidationError(f"Time out of range: {value.hours}:{value.minutes}")
        return value
    return TimeOfDay.parse(value)


def compute_window(time: TimeLike, offset_minutes: int = DEFAULT_OFFSET_MINUTES) -> TimeWindow:
    """
    Derive the search window ``[time, time + offset_minutes]``.

    Minutes roll into hours and hours wrap at 24, so 23:30 with the default
    offset ends at 01:00 the next day.
    """
    start = parse_time(time)
    if isinstance(offset_minutes, bool) or not isinstance(offset_minutes, int):
        raise ValidationError(f"Window offset must be a whole number of minutes, got {offset_minutes!r}")
    if offset_minutes < 0:
        raise ValidationError(f"Window offset must not be negative, got {offset_minutes}")

    total_end_minutes = start.minutes + offset_minutes
    end_hours = (start.hours + total_end_minutes // 60) % 24
    end_minutes = total_end_minutes % 60

    return TimeWindow(start=TimeOfDay(hours=start.hours, minutes=start.minutes),
                      end=TimeOfDay(hours=end_hours, minutes=end_minutes))


def time_range(start: TimeLike, end: TimeLike) -> TimeWindow:
    """Explicit window from two times"""
    return TimeWindow(start=parse_time(start), end=parse_time(end))


@dataclass(frozen=True)
class NextPrayer:
    slot: str
    time: TimeOfDay
    is_tomorrow: bool
    azan: Optional[TimeOfDay] = None


def select_next(candidates: Iterable[tuple[str, TimeOfDay]], now: TimeOfDay) -> Optional[tuple[str, TimeOfDay, bool]]:
    """
    Pick the earliest candidate strictly later than ``now``.

    When every candidate has passed, roll over to the earliest one overall
    (tomorrow's first prayer). Returns ``(slot, time, is_tomorrow)`` or None
    when there are no candidates.
    """
    ordered = sorted(candidates, key=lambda c: c[1].minute_of_day)
    if not ordered:
        return None

    for slot, time in ordered:
        if time.minute_of_day > now.minute_of_day:
            return slot, time, False

    slot, time = ordered[0]
    return slot, time, True


def is_congregational_override(schedule: PrayerSchedule, now: TimeOfDay, weekday: int,
                               congregational_weekday: int = FRIDAY) -> bool:
    """On the congregational day, between fajr and juma, juma is always next"""
    if weekday != congregational_weekday or schedule.juma is None:
        return False
    return schedule.fajr.minute_of_day < now.minute_of_day < schedule.juma.minute_of_day


def daily_candidates(schedule: PrayerSchedule, weekday: int,
                     congregational_weekday: int = FRIDAY) -> list[tuple[str, PrayerTime]]:
    """Prayers held today: the five daily prayers, plus juma on the congregational day"""
    candidates = [(slot, getattr(schedule, slot)) for slot in MANDATORY_SLOTS]
    if weekday == congregational_weekday and schedule.juma is not None:
        candidates.append(("juma", schedule.juma))
    return candidates


def next_prayer(schedule: PrayerSchedule, now: datetime,
                azan: Optional[AzanSchedule] = None,
                congregational_weekday: int = FRIDAY) -> NextPrayer:
    """Determine which prayer comes next at a mosque for the wall-clock time ``now``"""
    current = TimeOfDay(hours=now.hour, minutes=now.minute)
    weekday = now.weekday()

    if is_congregational_override(schedule, current, weekday, congregational_weekday):
        slot, time, is_tomorrow = "juma", schedule.juma, False
    else:
        # Mandatory slots are always present, so there is always a candidate
        slot, time, is_tomorrow = select_next(
            daily_candidates(schedule, weekday, congregational_weekday), current
        )

    azan_time = getattr(azan, slot) if azan is not None else None
    return NextPrayer(slot=slot, time=time, is_tomorrow=is_tomorrow, azan=azan_time)
