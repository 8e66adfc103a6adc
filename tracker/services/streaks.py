import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

import pytz

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreakState:
    current_streak: int = 0
    longest_streak: int = 0
    streak_start_date: Optional[date] = None
    last_activity_date: Optional[date] = None

    @classmethod
    def from_row(cls, row) -> "StreakState":
        return cls(
            current_streak=row.current_streak or 0,
            longest_streak=row.longest_streak or 0,
            streak_start_date=row.streak_start_date,
            last_activity_date=row.last_activity_date,
        )

    def apply_to(self, row) -> None:
        row.current_streak = self.current_streak
        row.longest_streak = self.longest_streak
        row.streak_start_date = self.streak_start_date
        row.last_activity_date = self.last_activity_date


def local_datetime(timestamp: datetime, tz_name: Optional[str] = None) -> datetime:
    """``timestamp`` as wall-clock time in the owner's timezone.

    Naive timestamps are UTC, which is how every DateTime column is stored.
    """
    try:
        tz = pytz.timezone(tz_name) if tz_name else pytz.UTC
    except pytz.UnknownTimeZoneError:
        logger.warning("Unknown timezone %s, falling back to UTC", tz_name)
        tz = pytz.UTC
    if timestamp.tzinfo is None:
        timestamp = pytz.UTC.localize(timestamp)
    return timestamp.astimezone(tz)


def local_day(timestamp: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar day of ``timestamp`` in the owner's timezone."""
    return local_datetime(timestamp, tz_name).date()


def update_streak(state: StreakState, event_day: date) -> StreakState:
    """Fold one completion day into the streak state.

    Same day as the last activity: unchanged. The day after: extend. Any
    larger gap, or no history: restart at 1 from ``event_day``. A day older
    than the last activity is a late backfill and leaves the state as is.
    """
    last = state.last_activity_date
    if last is not None and event_day <= last:
        return state

    if last is not None and event_day - last == timedelta(days=1):
        new_state = replace(state, current_streak=state.current_streak + 1, last_activity_date=event_day)
    else:
        new_state = replace(state, current_streak=1, streak_start_date=event_day, last_activity_date=event_day)

    return replace(new_state, longest_streak=max(new_state.longest_streak, new_state.current_streak))


def replay(days: Iterable[date], state: Optional[StreakState] = None) -> StreakState:
    state = state or StreakState()
    for day in days:
        state = update_streak(state, day)
    return state


def active_streak(state: StreakState, today: date) -> int:
    """Streak as it stands on ``today``: broken once a full day passes with no activity."""
    if state.last_activity_date is None:
        return 0
    if today - state.last_activity_date > timedelta(days=1):
        return 0
    return state.current_streak
