"""Recurrence expansion for tasks - flowcal.

Turns task definitions into concrete dated instances for a query window.
All calendar arithmetic (day boundaries, weekdays, month lengths) happens in
the display zone; instants handed in and out are UTC.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Collection, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Optional

from dateutil.relativedelta import relativedelta

from ..core.timezone_utils import (
    ZoneLike,
    at_display_time,
    date_key,
    ensure_utc,
    resolve_zone,
    to_display_zone,
)
from .models import CalendarEvent, EventType, RecurrencePattern, Task

logger = logging.getLogger(__name__)

CompletionMap = Mapping[str, Collection[str]]


@dataclass
class RecurrenceExpanderConfig:
    """Configuration for task recurrence expansion.

    Attributes:
        max_instances_per_entity: Hard cap on instances generated for one task in a window
    """

    max_instances_per_entity: int = 1000


@dataclass(frozen=True)
class _Anchor:
    day: datetime.date
    hour: int
    minute: int


class RecurrenceExpander:
    """Expands one-off and recurring tasks into calendar instances.

    Expansion is pure: tasks and completion maps are never modified, and
    re-running over the same window yields identical instance keys.
    """

    def __init__(
        self,
        display_timezone: ZoneLike = None,
        config: Optional[RecurrenceExpanderConfig] = None,
    ) -> None:
        self.tz = resolve_zone(display_timezone)
        self.config = config or RecurrenceExpanderConfig()

    def expand(
        self,
        tasks: Iterable[Task],
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        completion_map: Optional[CompletionMap] = None,
    ) -> list[CalendarEvent]:
        """Expand tasks into calendar events within [window_start, window_end].

        Args:
            tasks: Task definitions
            window_start: Inclusive window start (UTC)
            window_end: Inclusive window end (UTC)
            completion_map: task id -> completed instance dates (``YYYY-MM-DD``)

        Returns:
            Calendar events in task order, instances ascending per task
        """
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        completions = completion_map or {}

        events: list[CalendarEvent] = []
        for task in tasks:
            events.extend(
                self.expand_task(task, window_start, window_end, completions.get(task.id, ()))
            )
        return events

    def expand_task(
        self,
        task: Task,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        completed_dates: Collection[str] = (),
    ) -> list[CalendarEvent]:
        """Expand a single task.

        A task whose pattern string is not recognised is treated as non-recurring.
        """
        pattern = task.pattern
        if task.recurrence_pattern and pattern is None:
            logger.warning(
                "Task %s has unknown recurrence pattern %r, treating as one-off",
                task.id,
                task.recurrence_pattern,
            )

        if pattern is None or pattern == RecurrencePattern.NONE:
            return self._expand_single(task, window_start, window_end, completed_dates)

        anchor_instant = ensure_utc(task.due_date or task.created_at or window_start)
        last_day = None
        if task.recurrence_end_date is not None:
            last_day = to_display_zone(task.recurrence_end_date, self.tz).date()

        events: list[CalendarEvent] = []
        for instant in self.occurrences(
            pattern, anchor_instant, window_start, window_end, last_day=last_day
        ):
            if len(events) >= self.config.max_instances_per_entity:
                logger.warning(
                    "Task %s hit the instance cap (%d) for window %s..%s",
                    task.id,
                    self.config.max_instances_per_entity,
                    window_start.isoformat(),
                    window_end.isoformat(),
                )
                break
            instance_date = date_key(instant, self.tz)
            events.append(
                self._build_event(task, instant, instance_date, instance_date in completed_dates)
            )
        return events

    def occurrences(
        self,
        pattern: RecurrencePattern,
        anchor_instant: datetime.datetime,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        last_day: Optional[datetime.date] = None,
    ) -> Iterator[datetime.datetime]:
        """Yield UTC instants of ``pattern`` within [window_start, window_end].

        ``last_day`` is the recurrence end date in the display zone; an instance
        on that day is still produced whatever its clock time. Generation stops
        at the first candidate past either bound.
        """
        anchor = self._anchor(anchor_instant)
        window_day = to_display_zone(window_start, self.tz).date()
        start_day = max(anchor.day, window_day)

        if pattern == RecurrencePattern.DAILY:
            days = self._step_days(start_day, 1)
        elif pattern in (RecurrencePattern.WEEKLY, RecurrencePattern.BIWEEKLY):
            period_weeks = 2 if pattern == RecurrencePattern.BIWEEKLY else 1
            days = self._step_days(
                self._first_weekly_day(anchor.day, start_day, period_weeks), 7 * period_weeks
            )
        elif pattern == RecurrencePattern.MONTHLY:
            days = self._step_months(anchor.day, start_day, lambda i: relativedelta(months=i))
        elif pattern == RecurrencePattern.END_OF_MONTH:
            first_of_month = anchor.day.replace(day=1)
            days = self._step_months(
                first_of_month, start_day, lambda i: relativedelta(months=i, day=31)
            )
        elif pattern == RecurrencePattern.YEARLY:
            days = self._step_years(anchor.day, start_day)
        else:
            return

        for day in days:
            instant = at_display_time(day, anchor.hour, anchor.minute, self.tz)
            if instant > window_end or (last_day is not None and day > last_day):
                return
            if instant < window_start or day < anchor.day:
                continue
            yield instant

    def _anchor(self, anchor_instant: datetime.datetime) -> _Anchor:
        local = to_display_zone(anchor_instant, self.tz)
        return _Anchor(day=local.date(), hour=local.hour, minute=local.minute)

    @staticmethod
    def _step_days(first: datetime.date, step: int) -> Iterator[datetime.date]:
        day = first
        while True:
            yield day
            day += datetime.timedelta(days=step)

    @staticmethod
    def _first_weekly_day(
        anchor_day: datetime.date, start_day: datetime.date, period_weeks: int
    ) -> datetime.date:
        """First day >= start_day on the anchor's weekday and an even week offset for biweekly."""
        elapsed = (start_day - anchor_day).days
        weeks = -(-elapsed // 7)
        if weeks % period_weeks:
            weeks += period_weeks - weeks % period_weeks
        return anchor_day + datetime.timedelta(weeks=weeks)

    @staticmethod
    def _step_months(
        base: datetime.date, start_day: datetime.date, offset_for
    ) -> Iterator[datetime.date]:
        # Offsets are always taken from the base so clamped days (Jan 31 -> Feb 28)
        # do not drift in later months.
        skip = (start_day.year - base.year) * 12 + (start_day.month - base.month) - 1
        i = max(0, skip)
        while True:
            yield base + offset_for(i)
            i += 1

    @staticmethod
    def _step_years(base: datetime.date, start_day: datetime.date) -> Iterator[datetime.date]:
        i = max(0, start_day.year - base.year - 1)
        while True:
            yield base + relativedelta(years=i)
            i += 1

    def _expand_single(
        self,
        task: Task,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        completed_dates: Collection[str],
    ) -> list[CalendarEvent]:
        if task.due_date is None:
            return []
        due = ensure_utc(task.due_date)
        if not window_start <= due <= window_end:
            return []
        instance_date = date_key(due, self.tz)
        completed = instance_date in completed_dates or task.is_done
        return [self._build_event(task, due, instance_date, completed)]

    @staticmethod
    def _build_event(
        task: Task, instant: datetime.datetime, instance_date: str, completed: bool
    ) -> CalendarEvent:
        return CalendarEvent(
            id=task.id,
            title=task.title,
            type=EventType.TASK,
            due_date=instant,
            completed=completed,
            completable=True,
            instance_date=instance_date,
            description=task.description,
            space=task.space,
            priority=task.priority,
            labels=list(task.labels),
            subtasks=[subtask.model_copy() for subtask in task.subtasks],
            board_id=task.board_id,
            board_name=task.board_name,
            column_name=task.column_name,
            recurrence_pattern=task.recurrence_pattern,
            recurrence_end_date=task.recurrence_end_date,
            link=task.link,
        )
