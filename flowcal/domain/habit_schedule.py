"""Habit day filtering for the calendar window."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Collection, Iterable, Mapping
from typing import Optional

from ..calendar.models import CalendarEvent, EventType, Habit, HabitFrequency
from ..core.timezone_utils import (
    ZoneLike,
    at_display_time,
    ensure_utc,
    resolve_zone,
    to_display_zone,
)

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIME = (9, 0)


def parse_reminder_time(value: Optional[str]) -> tuple[int, int]:
    """Parse ``HH:MM`` into (hour, minute), defaulting to 09:00.

    Args:
        value: Reminder time string

    Returns:
        Hour and minute in the display zone
    """
    if not value:
        return DEFAULT_REMINDER_TIME
    try:
        hour_text, _, minute_text = value.strip().partition(":")
        hour = int(hour_text)
        minute = int(minute_text or 0)
    except ValueError:
        logger.warning("Invalid habit reminder time %r, using 09:00", value)
        return DEFAULT_REMINDER_TIME
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        logger.warning("Out of range habit reminder time %r, using 09:00", value)
        return DEFAULT_REMINDER_TIME
    return hour, minute


def sunday_weekday(day: datetime.date) -> int:
    """Weekday of ``day`` counted 0=Sunday..6=Saturday."""
    return day.isoweekday() % 7


def is_scheduled_on(habit: Habit, day: datetime.date) -> bool:
    """Whether ``habit`` is due on display-zone calendar ``day``."""
    frequency = (habit.frequency or "").strip().lower()
    if frequency == HabitFrequency.DAILY.value:
        return True
    if frequency == HabitFrequency.WEEKLY.value:
        return sunday_weekday(day) in habit.target_days
    return False


class HabitScheduler:
    """Emits one event per scheduled display-zone day for active habits."""

    def __init__(self, display_timezone: ZoneLike = None) -> None:
        self.tz = resolve_zone(display_timezone)

    def expand(
        self,
        habits: Iterable[Habit],
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        completion_map: Optional[Mapping[str, Collection[str]]] = None,
    ) -> list[CalendarEvent]:
        """Build habit events for every matching day in [window_start, window_end].

        Args:
            habits: Habit definitions; inactive ones are ignored
            window_start: Inclusive window start (UTC)
            window_end: Inclusive window end (UTC)
            completion_map: habit id -> completed instance dates

        Returns:
            Habit events, ascending per habit
        """
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        completions = completion_map or {}

        first_day = to_display_zone(window_start, self.tz).date()
        last_day = to_display_zone(window_end, self.tz).date()

        events: list[CalendarEvent] = []
        for habit in habits:
            if not habit.active:
                continue
            frequency = (habit.frequency or "").strip().lower()
            if frequency not in (HabitFrequency.DAILY.value, HabitFrequency.WEEKLY.value):
                logger.warning("Habit %s has unknown frequency %r", habit.id, habit.frequency)
                continue

            hour, minute = parse_reminder_time(habit.reminder_time)
            created_day = (
                to_display_zone(habit.created_at, self.tz).date() if habit.created_at else None
            )
            completed_dates = completions.get(habit.id, ())

            day = first_day if created_day is None else max(first_day, created_day)
            while day <= last_day:
                if is_scheduled_on(habit, day):
                    instant = at_display_time(day, hour, minute, self.tz)
                    if window_start <= instant <= window_end:
                        instance_date = day.isoformat()
                        completed = instance_date in completed_dates
                        events.append(self._build_event(habit, instant, instance_date, completed))
                day += datetime.timedelta(days=1)
        return events

    @staticmethod
    def _build_event(
        habit: Habit, instant: datetime.datetime, instance_date: str, completed: bool
    ) -> CalendarEvent:
        return CalendarEvent(
            id=f"habit-{habit.id}",
            title=habit.name,
            type=EventType.HABIT,
            due_date=instant,
            completed=completed,
            completable=True,
            instance_date=instance_date,
            description=habit.description,
            space=habit.space,
            habit_id=habit.id,
            color=habit.color,
            link=habit.link,
        )
