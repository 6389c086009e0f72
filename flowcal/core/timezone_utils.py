"""Display-zone conversion utilities for flowcal.

All instants are stored in UTC. Every "today", weekday and clock-time decision
is made in a single display zone (Asia/Tokyo unless configured otherwise).
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from dataclasses import dataclass
from functools import lru_cache
from typing import Union

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_TIMEZONE = "Asia/Tokyo"

TEST_TIME_ENV_VAR = "FLOWCAL_TEST_TIME"

ZoneLike = Union[str, datetime.tzinfo, None]


@dataclass(frozen=True)
class DisplayComponents:
    """Wall-clock fields of an instant in the display zone.

    ``weekday`` counts from Sunday (0) to Saturday (6), matching habit target days.
    """

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int
    weekday: int
    microsecond: int = 0


@lru_cache(maxsize=20)
def _load_zone(tz_name: str) -> datetime.tzinfo:
    try:
        return zoneinfo.ZoneInfo(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Invalid display timezone %r, falling back to %r", tz_name, DEFAULT_DISPLAY_TIMEZONE
        )
        return zoneinfo.ZoneInfo(DEFAULT_DISPLAY_TIMEZONE)


def resolve_zone(tz: ZoneLike = None) -> datetime.tzinfo:
    """Resolve a zone name or tzinfo to a tzinfo, defaulting to the display zone.

    Args:
        tz: IANA name, tzinfo instance, or None for the default display zone

    Returns:
        Timezone info object
    """
    if tz is None:
        return _load_zone(DEFAULT_DISPLAY_TIMEZONE)
    if isinstance(tz, datetime.tzinfo):
        return tz
    return _load_zone(tz)


def ensure_utc(instant: datetime.datetime) -> datetime.datetime:
    """Return ``instant`` in UTC, treating naive values as already UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=datetime.UTC)
    return instant.astimezone(datetime.UTC)


def to_display_zone(utc_instant: datetime.datetime, tz: ZoneLike = None) -> datetime.datetime:
    """Convert a stored instant to the display zone.

    Args:
        utc_instant: Aware datetime, or naive datetime interpreted as UTC
        tz: Display zone override

    Returns:
        Aware datetime in the display zone
    """
    return ensure_utc(utc_instant).astimezone(resolve_zone(tz))


def to_utc(value: datetime.datetime | str, tz: ZoneLike = None) -> datetime.datetime:
    """Convert a display-zone instant (or ISO 8601 string) to UTC.

    Naive inputs are interpreted as display-zone wall-clock time; aware inputs
    keep their own offset.

    Args:
        value: Datetime or ISO 8601 string
        tz: Display zone override

    Returns:
        Aware datetime in UTC

    Raises:
        ValueError: If ``value`` is a string that is not valid ISO 8601
    """
    if isinstance(value, str):
        value = date_parser.isoparse(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=resolve_zone(tz))
    return value.astimezone(datetime.UTC)


def now_in_display_zone(tz: ZoneLike = None) -> datetime.datetime:
    """Return the current instant expressed in the display zone."""
    return to_display_zone(now_utc(), tz)


def display_components(utc_instant: datetime.datetime, tz: ZoneLike = None) -> DisplayComponents:
    """Break an instant into display-zone wall-clock components.

    Args:
        utc_instant: Instant to decompose
        tz: Display zone override

    Returns:
        DisplayComponents with Sunday-based weekday
    """
    local = to_display_zone(utc_instant, tz)
    return DisplayComponents(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
        second=local.second,
        weekday=local.isoweekday() % 7,
        microsecond=local.microsecond,
    )


def from_display_components(
    year: int,
    month: int,
    day: int,
    hour: int = 0,
    minute: int = 0,
    second: int = 0,
    microsecond: int = 0,
    tz: ZoneLike = None,
) -> datetime.datetime:
    """Build a UTC instant from display-zone wall-clock components.

    Inverse of ``display_components`` down to the microsecond.

    Returns:
        Aware datetime in UTC
    """
    local = datetime.datetime(
        year, month, day, hour, minute, second, microsecond, tzinfo=resolve_zone(tz)
    )
    return local.astimezone(datetime.UTC)


def date_key(instant: datetime.datetime, tz: ZoneLike = None) -> str:
    """Return the display-zone calendar date of ``instant`` as ``YYYY-MM-DD``."""
    return to_display_zone(instant, tz).date().isoformat()


def at_display_time(
    day: datetime.date, hour: int, minute: int, tz: ZoneLike = None
) -> datetime.datetime:
    """Return the UTC instant of ``hour:minute`` on a display-zone calendar day."""
    return from_display_components(day.year, day.month, day.day, hour, minute, 0, tz=tz)


class TimeProvider:
    """Provides current time with test time override support."""

    def __init__(self, env_var: str = TEST_TIME_ENV_VAR):
        self.env_var = env_var

    def now_utc(self) -> datetime.datetime:
        """Return current UTC time with tzinfo.

        Can be overridden for testing via the FLOWCAL_TEST_TIME environment variable.
        Format: ISO 8601 datetime string (e.g., "2025-01-15T09:00:00+09:00").
        Naive values are taken as UTC.

        Returns:
            Current time in UTC with timezone info
        """
        test_time = os.environ.get(self.env_var)
        if test_time:
            try:
                dt = date_parser.isoparse(test_time)
                return ensure_utc(dt)
            except (ValueError, OverflowError) as e:
                logger.warning("Failed to parse %s=%r: %s", self.env_var, test_time, e)

        return datetime.datetime.now(datetime.UTC)


_time_provider = TimeProvider()


def now_utc() -> datetime.datetime:
    """Get current UTC time (convenience function).

    Returns:
        Current time in UTC
    """
    return _time_provider.now_utc()
