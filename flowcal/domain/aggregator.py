"""Calendar aggregation: tasks, habits and external subscriptions for one window.

The aggregator runs the primary window through the recurrence expander, the
habit scheduler and subscription ingestion, then the optional overdue,
upcoming and unscheduled passes. Results are de-duplicated on
(id, instance date), keeping the first occurrence, and sorted by due instant.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Callable, Optional

from ..calendar.ingestion import ExternalFeedIngestion
from ..calendar.models import CalendarEvent, EventType, Task
from ..calendar.recurrence import RecurrenceExpander
from ..core.timezone_utils import ZoneLike, date_key, ensure_utc, now_utc, resolve_zone
from .habit_schedule import HabitScheduler
from .store import ALL_SPACES, CalendarStore

logger = logging.getLogger(__name__)

DEFAULT_OVERDUE_LOOKBACK_DAYS = 30
DEFAULT_UPCOMING_DAYS = 7

_FAR_FUTURE = datetime.datetime.max.replace(tzinfo=datetime.UTC)


@dataclass(frozen=True)
class AggregationFlags:
    """Optional extension passes for an aggregation query."""

    include_overdue: bool = False
    include_upcoming: bool = False
    include_no_due_date: bool = False


def dedupe_events(events: Iterable[CalendarEvent]) -> list[CalendarEvent]:
    """Drop repeated (id, instance_date) pairs, keeping the first one seen."""
    seen: set[tuple[str, Optional[str]]] = set()
    unique: list[CalendarEvent] = []
    for event in events:
        key = event.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(event)
    return unique


def sort_events(events: list[CalendarEvent]) -> list[CalendarEvent]:
    """Ascending by due instant; unscheduled items last, ties by title."""
    return sorted(
        events,
        key=lambda e: (
            ensure_utc(e.due_date) if e.due_date is not None else _FAR_FUTURE,
            e.title.lower(),
        ),
    )


class CalendarAggregator:
    """Builds the unified calendar view for a user and window."""

    def __init__(
        self,
        store: CalendarStore,
        ingestion: ExternalFeedIngestion,
        expander: Optional[RecurrenceExpander] = None,
        habit_scheduler: Optional[HabitScheduler] = None,
        display_timezone: ZoneLike = None,
        overdue_lookback_days: int = DEFAULT_OVERDUE_LOOKBACK_DAYS,
        upcoming_days: int = DEFAULT_UPCOMING_DAYS,
        clock: Callable[[], datetime.datetime] = now_utc,
    ) -> None:
        self.tz = resolve_zone(display_timezone)
        self.store = store
        self.ingestion = ingestion
        self.expander = expander or RecurrenceExpander(self.tz)
        self.habit_scheduler = habit_scheduler or HabitScheduler(self.tz)
        self.overdue_lookback = datetime.timedelta(days=overdue_lookback_days)
        self.upcoming_span = datetime.timedelta(days=upcoming_days)
        self._clock = clock

    async def aggregate(
        self,
        user_id: str,
        space: Optional[str],
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        flags: Optional[AggregationFlags] = None,
    ) -> list[CalendarEvent]:
        """Return the user's calendar items for [window_start, window_end].

        Args:
            user_id: Owner whose data is read
            space: Space filter; ``None`` or ``"all"`` disables filtering
            window_start: Inclusive window start
            window_end: Inclusive window end
            flags: Optional overdue / upcoming / unscheduled passes

        Returns:
            De-duplicated events sorted by due instant
        """
        flags = flags or AggregationFlags()
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)
        if window_end < window_start:
            raise ValueError("window end precedes window start")

        space_filter = None if space in (None, "", ALL_SPACES) else space
        now = ensure_utc(self._clock())
        overdue_start = now - self.overdue_lookback
        upcoming_end = window_end + self.upcoming_span

        tasks = await self.store.list_tasks(user_id, space_filter)
        habits = await self.store.list_habits(user_id, space_filter)
        subscriptions = await self.store.list_subscriptions(
            user_id, space_filter, enabled_only=True
        )

        # One completion read covering every pass
        range_start = min(window_start, overdue_start) if flags.include_overdue else window_start
        range_end = upcoming_end if flags.include_upcoming else window_end
        first_key, last_key = date_key(range_start, self.tz), date_key(range_end, self.tz)
        task_completions = await self.store.task_completions(user_id, first_key, last_key)
        habit_completions = await self.store.habit_completions(
            user_id, date_key(window_start, self.tz), date_key(window_end, self.tz)
        )

        events: list[CalendarEvent] = []
        events.extend(self.expander.expand(tasks, window_start, window_end, task_completions))
        events.extend(
            self.habit_scheduler.expand(habits, window_start, window_end, habit_completions)
        )
        events.extend(await self.ingestion.collect(subscriptions, window_start, window_end))

        if flags.include_overdue:
            events.extend(self._overdue(tasks, overdue_start, now, task_completions))
        if flags.include_upcoming:
            events.extend(self._upcoming(tasks, window_end, upcoming_end, task_completions))
        if flags.include_no_due_date:
            events.extend(self._unscheduled(tasks))

        result = sort_events(dedupe_events(events))
        logger.debug(
            "Aggregated %d events for user %s space=%s window=%s..%s",
            len(result),
            user_id,
            space or ALL_SPACES,
            window_start.isoformat(),
            window_end.isoformat(),
        )
        return result

    def _overdue(
        self,
        tasks: list[Task],
        overdue_start: datetime.datetime,
        now: datetime.datetime,
        completions: dict[str, set[str]],
    ) -> list[CalendarEvent]:
        """Incomplete instances due before ``now``.

        One-off tasks are considered however old they are; recurring tasks are
        expanded back to ``overdue_start`` only.
        """
        one_off = [t for t in tasks if not t.is_recurring and t.due_date is not None]
        recurring = [t for t in tasks if t.is_recurring]

        candidates: list[CalendarEvent] = []
        for task in one_off:
            due = ensure_utc(task.due_date)
            if due < now:
                candidates.extend(self.expander.expand([task], due, due, completions))
        candidates.extend(self.expander.expand(recurring, overdue_start, now, completions))

        return [
            e
            for e in candidates
            if not e.completed and e.due_date is not None and ensure_utc(e.due_date) < now
        ]

    def _upcoming(
        self,
        tasks: list[Task],
        window_end: datetime.datetime,
        upcoming_end: datetime.datetime,
        completions: dict[str, set[str]],
    ) -> list[CalendarEvent]:
        """Incomplete instances strictly after the primary window."""
        candidates = self.expander.expand(tasks, window_end, upcoming_end, completions)
        return [
            e
            for e in candidates
            if not e.completed and e.due_date is not None and ensure_utc(e.due_date) > window_end
        ]

    @staticmethod
    def _unscheduled(tasks: list[Task]) -> list[CalendarEvent]:
        return [
            CalendarEvent(
                id=task.id,
                title=task.title,
                type=EventType.TASK,
                due_date=None,
                completed=task.is_done,
                completable=True,
                instance_date=None,
                unscheduled=True,
                description=task.description,
                space=task.space,
                priority=task.priority,
                labels=list(task.labels),
                subtasks=[subtask.model_copy() for subtask in task.subtasks],
                board_id=task.board_id,
                board_name=task.board_name,
                column_name=task.column_name,
                link=task.link,
            )
            for task in tasks
            if task.due_date is None and not task.is_recurring
        ]
