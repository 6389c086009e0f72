"""Outbound iCalendar feed of a user's tasks and habits.

Feed URLs carry a token derived from the user id and the server secret, so no
per-user token is stored. The token is checked before any data is read.
"""

from __future__ import annotations

import datetime
import hashlib
import hmac
import logging
from typing import Optional

from icalendar import Calendar, Event, vRecur

from ..calendar.exceptions import FeedAuthorizationError
from ..calendar.models import Habit, HabitFrequency, RecurrencePattern, Task
from ..core.timezone_utils import (
    ZoneLike,
    at_display_time,
    date_key,
    ensure_utc,
    now_utc,
    resolve_zone,
    to_display_zone,
)
from .habit_schedule import parse_reminder_time
from .store import CalendarStore

logger = logging.getLogger(__name__)

FEED_INSTRUCTIONS = (
    "Add this URL to your calendar app (Google Calendar, Apple Calendar, Outlook, etc.) "
    "as a subscription"
)

RRULE_BY_PATTERN: dict[RecurrencePattern, str] = {
    RecurrencePattern.DAILY: "FREQ=DAILY",
    RecurrencePattern.WEEKLY: "FREQ=WEEKLY",
    RecurrencePattern.BIWEEKLY: "FREQ=WEEKLY;INTERVAL=2",
    RecurrencePattern.MONTHLY: "FREQ=MONTHLY",
    RecurrencePattern.END_OF_MONTH: "FREQ=MONTHLY;BYMONTHDAY=-1",
    RecurrencePattern.YEARLY: "FREQ=YEARLY",
}

PRIORITY_MAP: dict[str, int] = {"urgent": 1, "high": 3, "medium": 5, "low": 7}
DEFAULT_PRIORITY = 5

# Index 0 is Sunday, matching Habit.target_days
WEEKDAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

TASK_DURATION = datetime.timedelta(hours=1)
HABIT_DURATION = datetime.timedelta(minutes=30)


def derive_feed_token(user_id: str, secret: str) -> str:
    """SHA-256 hex digest of ``"{user_id}-{secret}"``."""
    return hashlib.sha256(f"{user_id}-{secret}".encode()).hexdigest()


def verify_feed_token(user_id: str, token: str, secret: str) -> bool:
    """Constant-time comparison of ``token`` with the derived token."""
    return hmac.compare_digest(derive_feed_token(user_id, secret), token or "")


def build_rrule(
    pattern: Optional[RecurrencePattern],
    recurrence_end_date: Optional[datetime.datetime] = None,
    tz: ZoneLike = None,
) -> Optional[str]:
    """Map a task pattern to an RRULE value.

    Args:
        pattern: Task recurrence pattern
        recurrence_end_date: Optional last instant; rendered as a bare
            ``UNTIL=YYYYMMDD`` date in the display zone
        tz: Display zone override

    Returns:
        RRULE value, or None for non-recurring patterns
    """
    if pattern is None:
        return None
    rule = RRULE_BY_PATTERN.get(pattern)
    if rule is None:
        return None
    if recurrence_end_date is not None:
        rule += ";UNTIL=" + date_key(recurrence_end_date, tz).replace("-", "")
    return rule


def build_habit_rrule(habit: Habit) -> Optional[str]:
    frequency = (habit.frequency or "").strip().lower()
    if frequency == HabitFrequency.DAILY.value:
        return "FREQ=DAILY"
    if frequency == HabitFrequency.WEEKLY.value:
        days = [WEEKDAY_CODES[d] for d in sorted(set(habit.target_days)) if 0 <= d <= 6]
        if days:
            return "FREQ=WEEKLY;BYDAY=" + ",".join(days)
        return "FREQ=WEEKLY"
    return None


def _with_link(description: Optional[str], link: Optional[str]) -> Optional[str]:
    if not link:
        return description or None
    if description:
        return f"{description}\n\nLink: {link}"
    return f"Link: {link}"


class FeedGenerator:
    """Renders the token-gated subscribable calendar document."""

    def __init__(
        self,
        store: CalendarStore,
        secret: str,
        frontend_url: str,
        feed_base_url: Optional[str] = None,
        display_timezone: ZoneLike = None,
        calendar_name: str = "FlowCal Tasks & Habits",
    ) -> None:
        self.store = store
        self._secret = secret
        self.frontend_url = frontend_url.rstrip("/")
        self.feed_base_url = (feed_base_url or frontend_url).rstrip("/")
        self.tz = resolve_zone(display_timezone)
        self.calendar_name = calendar_name

    def feed_url(self, user_id: str) -> dict[str, str]:
        """Subscription URL with the user's token embedded."""
        token = derive_feed_token(user_id, self._secret)
        return {
            "url": f"{self.feed_base_url}/api/calendar/ical/{user_id}/{token}",
            "instructions": FEED_INSTRUCTIONS,
        }

    async def render_feed(self, user_id: str, token: str) -> str:
        """Render the user's feed.

        Raises:
            FeedAuthorizationError: If ``token`` does not match, before any store access
        """
        if not verify_feed_token(user_id, token, self._secret):
            logger.warning("Rejected feed request for user %s: bad token", user_id)
            raise FeedAuthorizationError("Unauthorized")

        tasks = await self.store.list_tasks(user_id)
        habits = await self.store.list_habits(user_id)
        calendar = self.build_calendar(tasks, habits)
        return calendar.to_ical().decode("utf-8")

    def build_calendar(self, tasks: list[Task], habits: list[Habit]) -> Calendar:
        calendar = Calendar()
        calendar.add("prodid", "-//FlowCal//Tasks Calendar//EN")
        calendar.add("version", "2.0")
        calendar.add("calscale", "GREGORIAN")
        calendar.add("x-wr-calname", self.calendar_name)
        calendar.add("x-wr-caldesc", "Your tasks and habits from FlowCal")

        stamp = now_utc()
        task_count = habit_count = 0
        for task in tasks:
            if task.due_date is None:
                continue
            calendar.add_component(self._task_event(task, stamp))
            task_count += 1
        for habit in habits:
            if not habit.active:
                continue
            event = self._habit_event(habit, stamp)
            if event is not None:
                calendar.add_component(event)
                habit_count += 1

        logger.debug("Rendered feed with %d tasks and %d habits", task_count, habit_count)
        return calendar

    def _task_event(self, task: Task, stamp: datetime.datetime) -> Event:
        due = ensure_utc(task.due_date)
        space = task.space or "work"

        event = Event()
        event.add("uid", task.id)
        event.add("dtstamp", stamp)
        event.add("dtstart", due)
        event.add("dtend", due + TASK_DURATION)
        event.add("summary", f"[{space}] {task.title}")
        description = _with_link(task.description, task.link)
        if description:
            event.add("description", description)
        event.add("categories", [space, task.board_name or "tasks"])
        if task.board_id:
            event.add("url", f"{self.frontend_url}/board/{task.board_id}")
        else:
            event.add("url", f"{self.frontend_url}/agenda?date={date_key(due, self.tz)}")
        event.add("status", "CANCELLED" if task.is_done else "CONFIRMED")
        if task.priority:
            event.add("priority", PRIORITY_MAP.get(task.priority.lower(), DEFAULT_PRIORITY))

        if task.recurrence_pattern:
            pattern = task.pattern
            if pattern is None:
                logger.warning(
                    "Task %s has unknown recurrence pattern %r, exporting as one-off",
                    task.id,
                    task.recurrence_pattern,
                )
            rule = build_rrule(pattern, task.recurrence_end_date, self.tz)
            if rule:
                event.add("rrule", vRecur.from_ical(rule))
        return event

    def _habit_event(self, habit: Habit, stamp: datetime.datetime) -> Optional[Event]:
        rule = build_habit_rrule(habit)
        if rule is None:
            logger.warning("Habit %s has unknown frequency %r, not exported", habit.id, habit.frequency)
            return None

        hour, minute = parse_reminder_time(habit.reminder_time)
        first_day = to_display_zone(habit.created_at or stamp, self.tz).date()
        start = at_display_time(first_day, hour, minute, self.tz)

        event = Event()
        event.add("uid", f"habit-{habit.id}")
        event.add("dtstamp", stamp)
        event.add("dtstart", start)
        event.add("dtend", start + HABIT_DURATION)
        event.add("summary", habit.name)
        description = _with_link(habit.description, habit.link)
        if description:
            event.add("description", description)
        event.add("categories", [habit.space or "personal", "habits"])
        event.add("url", f"{self.frontend_url}/agenda?date={first_day.isoformat()}")
        event.add("status", "CONFIRMED")
        event.add("priority", DEFAULT_PRIORITY)
        event.add("rrule", vRecur.from_ical(rule))
        return event
