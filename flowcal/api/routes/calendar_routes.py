"""Calendar view, feed URL, outbound feed and health routes."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from typing import Any, Optional

from aiohttp import web

from flowcal import __version__
from flowcal.calendar.exceptions import FeedAuthorizationError
from flowcal.calendar.feed_cache import FeedCache
from flowcal.core.timezone_utils import ZoneLike, ensure_utc, to_utc
from flowcal.domain.aggregator import AggregationFlags, CalendarAggregator
from flowcal.domain.feed_generator import FeedGenerator

logger = logging.getLogger(__name__)

UserResolver = Callable[[web.Request], Optional[str]]

VALID_SPACES = ("all", "work", "personal")
_TRUE_VALUES = ("1", "true", "yes", "on")


def parse_instant(value: str, tz: ZoneLike = None) -> datetime.datetime:
    """Parse a query instant given as UNIX seconds or ISO 8601.

    Raises:
        ValueError: If ``value`` is neither
    """
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        return to_utc(value, tz)
    try:
        return datetime.datetime.fromtimestamp(seconds, tz=datetime.UTC)
    except (OverflowError, OSError) as e:
        raise ValueError(f"timestamp out of range: {value}") from e


def parse_flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUE_VALUES


def unauthorized_json() -> web.Response:
    return web.json_response({"error": "Unauthorized"}, status=401)


def register_calendar_routes(
    app: web.Application,
    aggregator: CalendarAggregator,
    feed_generator: FeedGenerator,
    feed_cache: FeedCache[Any],
    user_resolver: UserResolver,
    time_provider: Callable[[], datetime.datetime],
    display_timezone: ZoneLike = None,
) -> None:
    """Register calendar routes.

    Args:
        app: aiohttp web application
        aggregator: Calendar aggregator for the events view
        feed_generator: Outbound feed generator
        feed_cache: Shared feed cache, reported by the health endpoint
        user_resolver: Maps a request to the calling user id, or None
        time_provider: Function to get current UTC time
        display_timezone: Zone for naive ISO query instants
    """

    async def calendar_events(request: web.Request) -> web.Response:
        """Unified calendar items for the requested window."""
        user_id = user_resolver(request)
        if not user_id:
            return unauthorized_json()

        query = request.query
        start_raw, end_raw = query.get("start"), query.get("end")
        if not start_raw or not end_raw:
            return web.json_response({"error": "start and end are required"}, status=400)
        try:
            window_start = parse_instant(start_raw, display_timezone)
            window_end = parse_instant(end_raw, display_timezone)
        except ValueError:
            return web.json_response(
                {"error": "start and end must be UNIX seconds or ISO 8601"}, status=400
            )
        if window_end < window_start:
            return web.json_response({"error": "end must not precede start"}, status=400)

        space = query.get("space", "all")
        if space not in VALID_SPACES:
            return web.json_response(
                {"error": f"space must be one of: {', '.join(VALID_SPACES)}"}, status=400
            )

        flags = AggregationFlags(
            include_overdue=parse_flag(query.get("includeOverdue")),
            include_upcoming=parse_flag(query.get("includeUpcoming")),
            include_no_due_date=parse_flag(query.get("includeNoDueDate")),
        )
        events = await aggregator.aggregate(user_id, space, window_start, window_end, flags)
        logger.debug("GET /api/calendar/events returned %d events for %s", len(events), user_id)
        return web.json_response(
            [event.model_dump(mode="json", by_alias=True) for event in events]
        )

    async def calendar_feed_url(request: web.Request) -> web.Response:
        """Subscription URL of the caller's outbound feed."""
        user_id = user_resolver(request)
        if not user_id:
            return unauthorized_json()
        return web.json_response(feed_generator.feed_url(user_id))

    async def calendar_ical(request: web.Request) -> web.Response:
        """Token-gated iCalendar feed; no caller identity is required."""
        user_id = request.match_info["user_id"]
        token = request.match_info["token"]
        try:
            body = await feed_generator.render_feed(user_id, token)
        except FeedAuthorizationError:
            return web.Response(status=401, text="Unauthorized")

        return web.Response(
            text=body,
            content_type="text/calendar",
            charset="utf-8",
            headers={"Content-Disposition": 'attachment; filename="flowcal.ics"'},
        )

    async def health_check(_request: web.Request) -> web.Response:
        """Liveness probe."""
        now = ensure_utc(time_provider())
        return web.json_response(
            {
                "status": "ok",
                "version": __version__,
                "server_time_iso": now.isoformat().replace("+00:00", "Z"),
                "feed_cache_entries": len(feed_cache),
            }
        )

    app.router.add_get("/api/calendar/events", calendar_events)
    app.router.add_get("/api/calendar/feed-url", calendar_feed_url)
    app.router.add_get("/api/calendar/ical/{user_id}/{token}", calendar_ical)
    app.router.add_get("/api/health", health_check)
