from datetime import date, datetime, timedelta
from enum import Enum
from typing import Union

from dateutil.relativedelta import relativedelta

from tracker.errors import ValidationError

DateLike = Union[date, datetime]


class RepeatType(str, Enum):
    NONE = "none"
    DAILY = "daily"
    EVERY_OTHER_DAY = "every_other_day"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NOT_SET = "not_set"


_FIXED_STEPS = {
    RepeatType.DAILY: timedelta(days=1),
    RepeatType.EVERY_OTHER_DAY: timedelta(days=2),
    RepeatType.WEEKLY: timedelta(days=7),
}


def next_occurrence(value: DateLike, repeat_type: Union[RepeatType, str]) -> DateLike:
    """Return the date that follows ``value`` under ``repeat_type``.

    The time-of-day part of a datetime is carried over unchanged. Monthly
    steps keep the day of month and clamp to the last day of shorter months
    (Jan 31 -> Feb 28/29), so a series chained from a clamped date stays on
    the clamped day afterwards.

    Raises ValueError for ``none`` or an unknown rule; callers validate user
    input with ``parse_repeat_type`` first.
    """
    rule = RepeatType(repeat_type)
    if rule in _FIXED_STEPS:
        return value + _FIXED_STEPS[rule]
    if rule is RepeatType.MONTHLY:
        return value + relativedelta(months=1)
    raise ValueError(f"repeat type {rule.value!r} has no next occurrence")


def parse_repeat_type(value) -> RepeatType:
    if value is None:
        return RepeatType.NONE
    try:
        return RepeatType(value)
    except ValueError:
        allowed = ", ".join(r.value for r in RepeatType)
        raise ValidationError(f"Unknown repeat type {value!r}, expected one of: {allowed}", field="repeat_type")


def parse_time_of_day(value) -> TimeOfDay:
    if value is None:
        return TimeOfDay.NOT_SET
    try:
        return TimeOfDay(value)
    except ValueError:
        allowed = ", ".join(t.value for t in TimeOfDay)
        raise ValidationError(f"Unknown time of day {value!r}, expected one of: {allowed}", field="time_of_day")
