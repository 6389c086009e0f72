"""iCalendar decoding for external feeds.

Raw VEVENTs are decoded once, here, into ``SingleOccurrence`` or
``RecurringComponent`` values with UTC instants. Components that cannot be
decoded are skipped with a warning instead of failing the whole feed.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Optional

from icalendar import Calendar

from ..core.timezone_utils import ZoneLike, from_display_components, resolve_zone
from .exceptions import FeedParseError
from .models import FeedComponent, ParsedFeed, RecurringComponent, SingleOccurrence

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "Untitled Event"


class FeedParser:
    """Decodes iCalendar text into a ``ParsedFeed``."""

    def __init__(self, display_timezone: ZoneLike = None) -> None:
        """Initialize the parser.

        Args:
            display_timezone: Zone used for floating times and all-day dates
        """
        self.tz = resolve_zone(display_timezone)

    def parse(self, content: str, source_url: Optional[str] = None) -> ParsedFeed:
        """Parse iCalendar content.

        Args:
            content: Raw feed body
            source_url: Feed URL, for logging and the result

        Returns:
            ParsedFeed with decoded components and per-component warnings

        Raises:
            FeedParseError: If the body is not an iCalendar document
        """
        if not content or "BEGIN:VCALENDAR" not in content:
            raise FeedParseError("Response is not an iCalendar document", source_url)

        try:
            calendar = Calendar.from_ical(content)
        except ValueError as e:
            raise FeedParseError(f"Unable to parse calendar data: {e}", source_url) from e

        calendar_name = calendar.get("X-WR-CALNAME")
        feed = ParsedFeed(
            source_url=source_url,
            calendar_name=str(calendar_name) if calendar_name else None,
        )

        for index, component in enumerate(calendar.walk("VEVENT")):
            try:
                feed.components.append(self._decode_component(component, index))
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                uid = component.get("UID", f"#{index}")
                logger.warning("Skipping VEVENT %s from %s: %s", uid, source_url, e)
                feed.warnings.append(f"VEVENT {uid}: {e}")

        logger.debug(
            "Parsed %d components (%d recurring) from %s",
            len(feed.components),
            len(feed.recurring),
            source_url,
        )
        return feed

    def _decode_component(self, component: Any, index: int) -> FeedComponent:
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise ValueError("missing DTSTART")

        start, all_day = self._to_utc(dtstart.dt)
        end = self._resolve_end(component, start, all_day)

        uid = str(component.get("UID") or "").strip() or f"event-{index}-{int(start.timestamp())}"
        summary = str(component.get("SUMMARY") or "").strip() or DEFAULT_SUMMARY
        description = component.get("DESCRIPTION")
        location = component.get("LOCATION")
        status = component.get("STATUS")

        common: dict[str, Any] = {
            "key": uid,
            "uid": uid,
            "summary": summary,
            "description": str(description) if description else None,
            "location": str(location) if location else None,
            "start": start,
            "end": end,
            "all_day": all_day,
            "status": str(status).upper() if status else None,
        }

        recurrence_id = component.get("RECURRENCE-ID")
        rrule = component.get("RRULE")
        if rrule is not None and recurrence_id is None:
            return RecurringComponent(
                **common,
                rrule=rrule.to_ical().decode("utf-8"),
                exdates=self._collect_exdates(component),
                timezone=None if all_day else self._zone_name(dtstart.dt),
            )

        return SingleOccurrence(
            **common,
            recurrence_id=self._to_utc(recurrence_id.dt)[0] if recurrence_id is not None else None,
        )

    def _resolve_end(
        self, component: Any, start: datetime.datetime, all_day: bool
    ) -> Optional[datetime.datetime]:
        dtend = component.get("DTEND")
        if dtend is not None:
            return self._to_utc(dtend.dt)[0]
        duration = component.get("DURATION")
        if duration is not None and isinstance(duration.dt, datetime.timedelta):
            return start + duration.dt
        if all_day:
            return start + datetime.timedelta(days=1)
        return None

    def _collect_exdates(self, component: Any) -> list[datetime.datetime]:
        """Collect EXDATE values, which icalendar exposes as one list or a list of lists."""
        raw = component.get("EXDATE")
        if raw is None:
            return []
        props = raw if isinstance(raw, list) else [raw]

        exdates: list[datetime.datetime] = []
        for prop in props:
            for item in getattr(prop, "dts", []):
                exdates.append(self._to_utc(item.dt)[0])
        return exdates

    def _to_utc(self, value: datetime.date) -> tuple[datetime.datetime, bool]:
        """Convert a DTSTART-style value to UTC.

        Returns:
            (instant, all_day). Dates become display-zone midnight; floating
            times are read as display-zone wall clock.
        """
        if isinstance(value, datetime.datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=self.tz)
            return value.astimezone(datetime.UTC), False
        if isinstance(value, datetime.date):
            return from_display_components(value.year, value.month, value.day, tz=self.tz), True
        raise TypeError(f"unsupported date value {value!r}")

    @staticmethod
    def _zone_name(value: datetime.date) -> Optional[str]:
        if not isinstance(value, datetime.datetime) or value.tzinfo is None:
            return None
        name = getattr(value.tzinfo, "key", None) or getattr(value.tzinfo, "zone", None)
        if name:
            return str(name)
        if value.utcoffset() == datetime.timedelta(0):
            return "UTC"
        return None
