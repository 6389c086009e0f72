"""Unit tests for flowcal.calendar.recurrence."""

from datetime import datetime, timezone
from typing import Any

import pytest

from flowcal.calendar.models import Task
from flowcal.calendar.recurrence import RecurrenceExpander, RecurrenceExpanderConfig


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def expander() -> RecurrenceExpander:
    return RecurrenceExpander("Asia/Tokyo")


class TestRecurringPatterns:
    """Pattern expansion; 10:00Z is 19:00 in the Tokyo display zone."""

    def test_expand_when_daily_then_one_instance_per_day(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Daily tasks produce an instance for every day in the window."""
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="daily")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 3, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-01", "2025-01-02", "2025-01-03"]
        assert all(e.due_date.hour == 10 for e in events)

    def test_expand_when_weekly_then_same_weekday(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Weekly tasks land on the anchor's weekday."""
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="weekly")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 15, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-01", "2025-01-08", "2025-01-15"]

    def test_expand_when_biweekly_then_every_other_week(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Biweekly tasks skip alternate weeks."""
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="biweekly")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 31, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-01", "2025-01-15", "2025-01-29"]

    def test_expand_when_biweekly_window_starts_on_off_week_then_keeps_parity(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """A window opening on an off week still lands on the anchor's cadence."""
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="biweekly")

        events = expander.expand([task], utc(2025, 1, 8), utc(2025, 2, 1), {})

        assert [e.instance_date for e in events] == ["2025-01-15", "2025-01-29"]

    def test_expand_when_monthly_then_same_day_each_month(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Monthly tasks repeat on the anchor's day of month."""
        task = make_task(due_date=utc(2025, 1, 15, 10), recurrence_pattern="monthly")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 3, 31, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-15", "2025-02-15", "2025-03-15"]

    def test_expand_when_monthly_on_31st_then_clamps_without_drift(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Short months clamp to their last day and later months return to the 31st."""
        task = make_task(due_date=utc(2025, 1, 31, 10), recurrence_pattern="monthly")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 4, 30, 23, 59, 59), {})

        assert [e.instance_date for e in events] == [
            "2025-01-31",
            "2025-02-28",
            "2025-03-31",
            "2025-04-30",
        ]

    def test_expand_when_end_of_month_then_last_day_of_each_month(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """end_of_month follows month lengths."""
        task = make_task(due_date=utc(2025, 1, 31, 10), recurrence_pattern="end_of_month")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 2, 28, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-31", "2025-02-28"]

    def test_expand_when_end_of_month_anchor_mid_month_then_still_month_end(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """The anchor day of month is irrelevant for end_of_month."""
        task = make_task(due_date=utc(2024, 1, 10, 10), recurrence_pattern="end_of_month")

        events = expander.expand([task], utc(2024, 1, 1), utc(2024, 3, 31, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2024-01-31", "2024-02-29", "2024-03-31"]

    def test_expand_when_yearly_from_leap_day_then_clamps_to_feb_28(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """A 29 February anchor falls on 28 February in common years."""
        task = make_task(due_date=utc(2024, 2, 29, 3), recurrence_pattern="yearly")

        events = expander.expand([task], utc(2024, 1, 1), utc(2026, 12, 31), {})

        assert [e.instance_date for e in events] == ["2024-02-29", "2025-02-28", "2026-02-28"]

    def test_expand_when_no_due_date_then_anchors_on_created_at(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Recurring tasks without a due date start from their creation instant."""
        task = make_task(
            due_date=None, created_at=utc(2025, 1, 5, 10), recurrence_pattern="daily"
        )

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 7, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-05", "2025-01-06", "2025-01-07"]

    def test_expand_when_recurrence_end_date_then_stops(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """No instance is produced after the recurrence end date (Jan 2 in Tokyo)."""
        task = make_task(
            due_date=utc(2025, 1, 1, 10),
            recurrence_pattern="daily",
            recurrence_end_date=utc(2025, 1, 2, 14, 59, 59),
        )

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5, 23, 59, 59), {})

        assert len(events) == 2

    def test_expand_when_end_date_is_bare_date_then_that_day_included(
        self, expander: RecurrenceExpander
    ) -> None:
        """An end date without a clock time still keeps its own day's instance."""
        task = Task.model_validate(
            {
                "id": "t1",
                "title": "Stand up",
                "ownerId": "u1",
                "dueDate": "2025-01-01T10:00:00Z",
                "recurrencePattern": "daily",
                "recurrenceEndDate": "2025-01-02",
            }
        )

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-01", "2025-01-02"]

    def test_expand_when_end_date_earlier_than_anchor_time_then_day_kept(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Only the calendar day of the end date matters, not its clock time."""
        task = make_task(
            due_date=utc(2025, 1, 1, 10),
            recurrence_pattern="weekly",
            recurrence_end_date=utc(2025, 1, 15, 0),
        )

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 31), {})

        assert [e.instance_date for e in events] == ["2025-01-01", "2025-01-08", "2025-01-15"]

    def test_expand_when_window_starts_later_then_begins_inside_window(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Long-running series only yield the instances inside the window."""
        task = make_task(due_date=utc(2024, 6, 1, 10), recurrence_pattern="daily")

        events = expander.expand([task], utc(2025, 1, 10), utc(2025, 1, 12, 23, 59, 59), {})

        assert [e.instance_date for e in events] == ["2025-01-10", "2025-01-11", "2025-01-12"]

    def test_expand_when_window_before_anchor_then_empty(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Nothing is generated before the anchor."""
        task = make_task(due_date=utc(2025, 3, 1, 10), recurrence_pattern="weekly")

        assert expander.expand([task], utc(2025, 1, 1), utc(2025, 2, 1), {}) == []


class TestDisplayZoneSemantics:
    """Day boundaries follow the display zone, not UTC."""

    def test_instance_date_when_utc_evening_then_next_tokyo_day(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """16:00Z on Jan 1 is 01:00 on Jan 2 in Tokyo."""
        task = make_task(due_date=utc(2025, 1, 1, 16), recurrence_pattern=None)

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 2), {})

        assert events[0].instance_date == "2025-01-02"

    def test_weekly_when_anchor_crosses_utc_midnight_then_keeps_tokyo_weekday(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """The weekday is the Tokyo weekday of the anchor (Thursday here)."""
        task = make_task(due_date=utc(2025, 1, 1, 16), recurrence_pattern="weekly")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 16), {})

        assert [e.instance_date for e in events] == ["2025-01-02", "2025-01-09", "2025-01-16"]
        assert all(e.due_date.hour == 16 for e in events)


class TestOneOffTasks:
    """Non-recurring tasks."""

    def test_expand_when_outside_window_then_skipped(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """A one-off task outside the window produces nothing."""
        task = make_task(due_date=utc(2025, 1, 10, 10), recurrence_pattern=None)

        assert expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5, 23, 59, 59), {}) == []

    def test_expand_when_pattern_none_string_then_single_instance(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """The explicit ``none`` pattern behaves as non-recurring."""
        task = make_task(due_date=utc(2025, 1, 2, 10), recurrence_pattern="none")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5), {})

        assert len(events) == 1
        assert events[0].id == "t1"

    def test_expand_when_no_due_date_and_not_recurring_then_skipped(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Unscheduled tasks are not placed in the window by the expander."""
        task = make_task(due_date=None, recurrence_pattern=None)

        assert expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5), {}) == []

    def test_expand_when_malformed_pattern_then_single_instance_and_warning(
        self, expander: RecurrenceExpander, make_task: Any, caplog: Any
    ) -> None:
        """An unknown pattern degrades to one instance at the due date."""
        task = make_task(due_date=utc(2025, 1, 2, 10), recurrence_pattern="fortnightly")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 31), {})

        assert len(events) == 1
        assert events[0].instance_date == "2025-01-02"
        assert "unknown recurrence pattern" in caplog.text

    def test_expand_when_task_in_done_column_then_completed(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """One-off tasks inherit completion from their status column."""
        task = make_task(due_date=utc(2025, 1, 2, 10), column_name="Done")

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5), {})

        assert events[0].completed is True

    def test_expand_when_explicit_completed_flag_then_overrides_column(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """The storage-level completion flag wins over the column name."""
        task = make_task(due_date=utc(2025, 1, 2, 10), column_name="Done", completed=False)

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 5), {})

        assert events[0].completed is False


class TestCompletionAndPurity:
    """Per-instance completion and determinism."""

    def test_expand_when_one_instance_completed_then_only_that_one(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Completing one occurrence leaves the others open."""
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="daily")

        events = expander.expand(
            [task], utc(2025, 1, 1), utc(2025, 1, 3, 23, 59, 59), {"t1": {"2025-01-02"}}
        )

        assert [e.completed for e in events] == [False, True, False]

    def test_expand_when_recurring_task_in_done_column_then_instances_follow_records(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Recurring instances use completion records only."""
        task = make_task(
            due_date=utc(2025, 1, 1, 10), recurrence_pattern="daily", column_name="Done"
        )

        events = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 2, 23, 59, 59), {})

        assert not any(e.completed for e in events)

    def test_expand_when_repeated_then_identical_keys_and_inputs_untouched(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Expansion is deterministic and does not mutate its inputs."""
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="weekly")
        completions = {"t1": {"2025-01-08"}}
        before = task.model_dump()

        first = expander.expand([task], utc(2025, 1, 1), utc(2025, 2, 1), completions)
        second = expander.expand([task], utc(2025, 1, 1), utc(2025, 2, 1), completions)

        assert [e.dedup_key for e in first] == [e.dedup_key for e in second]
        assert task.model_dump() == before
        assert completions == {"t1": {"2025-01-08"}}

    def test_expand_when_instances_then_carry_task_fields(
        self, expander: RecurrenceExpander, make_task: Any
    ) -> None:
        """Instances reuse the task id and copy its presentation fields."""
        task = make_task(
            due_date=utc(2025, 1, 1, 10),
            recurrence_pattern="daily",
            labels=["ops"],
            link="https://example.com/t1",
        )

        event = expander.expand([task], utc(2025, 1, 1), utc(2025, 1, 1, 23), {})[0]

        assert event.id == "t1"
        assert event.type == "task"
        assert event.completable is True
        assert event.labels == ["ops"]
        assert event.board_name == "Board"
        assert event.recurrence_pattern == "daily"

    def test_expand_when_cap_reached_then_truncates(
        self, make_task: Any, caplog: Any
    ) -> None:
        """The per-entity instance cap bounds very long windows."""
        capped = RecurrenceExpander(
            "Asia/Tokyo", RecurrenceExpanderConfig(max_instances_per_entity=10)
        )
        task = make_task(due_date=utc(2025, 1, 1, 10), recurrence_pattern="daily")

        events = capped.expand([task], utc(2025, 1, 1), utc(2030, 1, 1), {})

        assert len(events) == 10
        assert "instance cap" in caplog.text
