"""Data models for calendar aggregation - flowcal."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from ..core.timezone_utils import ensure_utc, now_utc


class RecurrencePattern(str, Enum):
    """Supported repetition patterns for tasks."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    END_OF_MONTH = "end_of_month"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[RecurrencePattern]:
        """Parse a stored pattern string.

        Args:
            value: Raw pattern value, any case

        Returns:
            Matching pattern, or None when empty or unknown
        """
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class EventType(str, Enum):
    """Origin of a unified calendar event."""

    TASK = "task"
    HABIT = "habit"
    EXTERNAL = "external"


class HabitFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the JSON API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Subtask(CamelModel):
    id: str
    title: str
    completed: bool = False


class Task(CamelModel):
    """A task as supplied by the storage layer."""

    id: str
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = Field(default=None, description="Anchor instant (UTC)")
    # Kept as the raw stored string so malformed values reach the expander intact
    recurrence_pattern: Optional[str] = None
    recurrence_end_date: Optional[datetime] = None
    column_name: Optional[str] = Field(default=None, description="Board column / status label")
    board_id: Optional[str] = None
    board_name: Optional[str] = None
    space: str = "personal"
    owner_id: str
    priority: Optional[str] = None
    labels: list[str] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    link: Optional[str] = None
    completed: Optional[bool] = Field(
        default=None, description="Explicit completion flag, when the storage layer has one"
    )

    @property
    def pattern(self) -> Optional[RecurrencePattern]:
        return RecurrencePattern.parse(self.recurrence_pattern)

    @property
    def is_recurring(self) -> bool:
        pattern = self.pattern
        return pattern is not None and pattern != RecurrencePattern.NONE

    @property
    def is_done(self) -> bool:
        """Completion of the entity itself, ignoring per-instance records."""
        if self.completed is not None:
            return self.completed
        return (self.column_name or "").strip().lower() == "done"


class Habit(CamelModel):
    """A periodic habit as supplied by the storage layer."""

    id: str
    name: str
    description: Optional[str] = None
    frequency: str = HabitFrequency.DAILY.value
    target_days: list[int] = Field(
        default_factory=list, description="Weekdays for weekly habits, 0=Sunday..6=Saturday"
    )
    active: bool = True
    reminder_time: Optional[str] = Field(default=None, description="HH:MM in the display zone")
    color: Optional[str] = None
    space: str = "personal"
    owner_id: str
    created_at: Optional[datetime] = None
    link: Optional[str] = None


class ExternalCalendarSubscription(CamelModel):
    """A user's subscription to an externally hosted iCalendar feed."""

    id: str
    feed_url: str = Field(alias="icalUrl")
    name: str
    space: str = "personal"
    color: str = "#6366f1"
    enabled: bool = True
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CalendarEvent(CamelModel):
    """Unified calendar item returned to callers.

    Built fresh for every query and never persisted.
    """

    id: str
    title: str
    type: EventType
    due_date: Optional[datetime] = Field(default=None, description="Effective due instant")
    completed: bool = False
    completable: bool = True
    instance_date: Optional[str] = Field(
        default=None, description="Display-zone YYYY-MM-DD of this occurrence"
    )
    description: Optional[str] = None
    space: Optional[str] = None
    location: Optional[str] = None
    unscheduled: bool = False

    # Task-origin fields
    priority: Optional[str] = None
    labels: list[str] = Field(default_factory=list)
    subtasks: list[Subtask] = Field(default_factory=list)
    board_id: Optional[str] = None
    board_name: Optional[str] = None
    column_name: Optional[str] = None
    recurrence_pattern: Optional[str] = None
    recurrence_end_date: Optional[datetime] = None
    link: Optional[str] = None

    # Habit-origin fields
    habit_id: Optional[str] = None
    color: Optional[str] = None

    # Subscription linkage for external items
    is_external: bool = False
    external_calendar_id: Optional[str] = None
    external_calendar_name: Optional[str] = None
    external_calendar_color: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, use_enum_values=True
    )

    @field_serializer("due_date", "recurrence_end_date")
    def _serialize_instant(self, value: Optional[datetime]) -> Optional[str]:
        if value is None:
            return None
        return ensure_utc(value).isoformat().replace("+00:00", "Z")

    @property
    def dedup_key(self) -> tuple[str, Optional[str]]:
        return (self.id, self.instance_date)


class FeedResponse(BaseModel):
    """Raw body of a successfully downloaded feed."""

    url: str
    content: str
    status_code: int = 200
    headers: dict[str, str] = Field(default_factory=dict)
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    fetch_time: datetime = Field(default_factory=now_utc)


class _ParsedComponentBase(BaseModel):
    """Fields shared by every decoded VEVENT."""

    key: str = Field(..., description="Stable identity used for occurrence ids")
    uid: str
    summary: str = "Untitled Event"
    description: Optional[str] = None
    location: Optional[str] = None
    start: datetime
    end: Optional[datetime] = None
    all_day: bool = False
    status: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SingleOccurrence(_ParsedComponentBase):
    """A non-repeating event, or a RECURRENCE-ID override of one occurrence."""

    kind: Literal["single"] = "single"
    recurrence_id: Optional[datetime] = None


class RecurringComponent(_ParsedComponentBase):
    """A master event carrying an RRULE."""

    kind: Literal["recurring"] = "recurring"
    rrule: str
    exdates: list[datetime] = Field(default_factory=list)
    timezone: Optional[str] = Field(default=None, description="TZID of DTSTART, if any")


FeedComponent = Annotated[Union[SingleOccurrence, RecurringComponent], Field(discriminator="kind")]


class ParsedFeed(BaseModel):
    """A decoded external calendar document."""

    source_url: Optional[str] = None
    calendar_name: Optional[str] = None
    components: list[FeedComponent] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def singles(self) -> list[SingleOccurrence]:
        return [c for c in self.components if isinstance(c, SingleOccurrence)]

    @property
    def recurring(self) -> list[RecurringComponent]:
        return [c for c in self.components if isinstance(c, RecurringComponent)]
