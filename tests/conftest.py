"""Shared fixtures for flowcal tests."""

from collections.abc import AsyncIterator, Generator
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any

import pytest

from flowcal.calendar.models import ExternalCalendarSubscription, Habit, Task
from flowcal.core.http_client import close_all_clients
from flowcal.core.timezone_utils import TEST_TIME_ENV_VAR

SIMPLE_FEED_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//Feed//EN
X-WR-CALNAME:Team Calendar
BEGIN:VEVENT
UID:standup-1
DTSTART:20250115T010000Z
DTEND:20250115T013000Z
SUMMARY:Standup
LOCATION:Room 4
DESCRIPTION:Daily sync
END:VEVENT
BEGIN:VEVENT
UID:offsite-1
DTSTART;VALUE=DATE:20250120
DTEND;VALUE=DATE:20250121
SUMMARY:Offsite
END:VEVENT
END:VCALENDAR
"""

RECURRING_FEED_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//Feed//EN
BEGIN:VEVENT
UID:weekly-review
DTSTART;TZID=Asia/Tokyo:20250106T100000
DTEND;TZID=Asia/Tokyo:20250106T110000
RRULE:FREQ=WEEKLY;COUNT=4
EXDATE;TZID=Asia/Tokyo:20250113T100000
SUMMARY:Weekly review
END:VEVENT
BEGIN:VEVENT
UID:weekly-review
RECURRENCE-ID;TZID=Asia/Tokyo:20250120T100000
DTSTART;TZID=Asia/Tokyo:20250120T150000
DTEND;TZID=Asia/Tokyo:20250120T160000
SUMMARY:Weekly review (moved)
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object for fetcher tests.

    Fields:
      - fetch_timeout_seconds: HTTP timeout in seconds
      - max_retries: retry attempts for network failures
      - retry_backoff_factor: multiplier for retry backoff delays
    """
    return SimpleNamespace(
        fetch_timeout_seconds=5,
        max_retries=0,
        retry_backoff_factor=1.5,
    )


@pytest.fixture
def display_timezone() -> str:
    """Deterministic display zone used across tests."""
    return "Asia/Tokyo"


@pytest.fixture
def simple_feed_ics() -> str:
    return SIMPLE_FEED_ICS


@pytest.fixture
def recurring_feed_ics() -> str:
    return RECURRING_FEED_ICS


@pytest.fixture
def make_task() -> Any:
    """Factory for tasks owned by user ``u1``."""

    def _make(**overrides: Any) -> Task:
        data: dict[str, Any] = {
            "id": "t1",
            "title": "Recurring Task",
            "owner_id": "u1",
            "space": "work",
            "priority": "medium",
            "column_name": "To Do",
            "board_id": "b1",
            "board_name": "Board",
            "created_at": datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return Task(**data)

    return _make


@pytest.fixture
def make_habit() -> Any:
    """Factory for habits owned by user ``u1``."""

    def _make(**overrides: Any) -> Habit:
        data: dict[str, Any] = {
            "id": "h1",
            "name": "Stretch",
            "owner_id": "u1",
            "frequency": "daily",
            "created_at": datetime(2024, 12, 1, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return Habit(**data)

    return _make


@pytest.fixture
def make_subscription() -> Any:
    """Factory for subscriptions owned by user ``u1``."""

    def _make(**overrides: Any) -> ExternalCalendarSubscription:
        data: dict[str, Any] = {
            "id": "sub1",
            "feed_url": "https://calendar.example.com/team.ics",
            "name": "Team",
            "owner_id": "u1",
            "space": "work",
            "color": "#22c55e",
        }
        data.update(overrides)
        return ExternalCalendarSubscription(**data)

    return _make


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear the frozen-clock override before and after each test."""
    monkeypatch.delenv(TEST_TIME_ENV_VAR, raising=False)
    yield
    monkeypatch.delenv(TEST_TIME_ENV_VAR, raising=False)


@pytest.fixture(autouse=True)
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients after every test."""
    yield
    await close_all_clients()
