"""External calendar subscription ingestion.

Fetches subscribed feeds through the feed cache, decodes them, and normalizes
their events into ``CalendarEvent`` values for a query window. A failing
subscription never affects the others: its error is logged and it contributes
no events.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Iterable
from typing import Optional

from ..core.timezone_utils import ZoneLike, date_key, ensure_utc, resolve_zone
from .exceptions import FeedError, FeedURLError, SubscriptionValidationError
from .feed_cache import FeedCache
from .feed_fetcher import FeedFetcher, fetch_deadline_seconds, validate_feed_scheme
from .feed_parser import FeedParser
from .feed_rrule import FeedRRuleExpander
from .models import (
    CalendarEvent,
    EventType,
    ExternalCalendarSubscription,
    ParsedFeed,
    RecurringComponent,
    SingleOccurrence,
)

logger = logging.getLogger(__name__)

DEFAULT_FETCH_CONCURRENCY = 4


def epoch_ms(instant: datetime.datetime) -> int:
    """Milliseconds since the UNIX epoch, used in per-occurrence ids."""
    return int(ensure_utc(instant).timestamp() * 1000)


class ExternalFeedIngestion:
    """Fetch, parse and normalize external calendar subscriptions."""

    def __init__(
        self,
        fetcher: FeedFetcher,
        cache: FeedCache[ParsedFeed],
        parser: Optional[FeedParser] = None,
        rrule_expander: Optional[FeedRRuleExpander] = None,
        display_timezone: ZoneLike = None,
        fetch_timeout: Optional[float] = None,
        concurrency: int = DEFAULT_FETCH_CONCURRENCY,
    ) -> None:
        """Set up ingestion.

        Args:
            fetch_timeout: Per-subscription deadline in seconds; defaults to the
                fetcher's whole retry budget (see ``fetch_deadline_seconds``)
        """
        self.tz = resolve_zone(display_timezone)
        self.fetcher = fetcher
        self.cache = cache
        self.parser = parser or FeedParser(self.tz)
        self.rrule_expander = rrule_expander or FeedRRuleExpander(self.tz)
        if fetch_timeout is None:
            fetch_timeout = fetch_deadline_seconds(getattr(fetcher, "settings", None))
        self.fetch_timeout = fetch_timeout
        self.concurrency = max(1, concurrency)

    async def fetch_and_parse(self, feed_url: str) -> ParsedFeed:
        """Return the parsed feed for ``feed_url``, served from cache when fresh.

        Raises:
            FeedError: If the feed cannot be fetched or parsed
        """
        return await self.cache.get_or_load(feed_url, lambda: self._download_and_parse(feed_url))

    async def _download_and_parse(self, feed_url: str) -> ParsedFeed:
        response = await self.fetcher.fetch(feed_url)
        return self.parser.parse(response.content, source_url=feed_url)

    def normalize(
        self,
        feed: ParsedFeed,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
        subscription_id: str,
        name: str,
        color: Optional[str],
        space: Optional[str] = None,
    ) -> list[CalendarEvent]:
        """Convert parsed components into events within [window_start, window_end].

        Recurring components yield one event per occurrence with id
        ``"{key}-{occurrence_epoch_ms}"``. A RECURRENCE-ID override replaces
        the master occurrence it names and reuses that occurrence's id.

        Args:
            feed: Parsed feed
            window_start: Inclusive window start
            window_end: Inclusive window end
            subscription_id: Owning subscription id
            name: Subscription display name
            color: Subscription color
            space: Subscription space

        Returns:
            Non-completable external events
        """
        window_start = ensure_utc(window_start)
        window_end = ensure_utc(window_end)

        overrides: dict[tuple[str, datetime.datetime], SingleOccurrence] = {
            (single.uid, single.recurrence_id): single
            for single in feed.singles
            if single.recurrence_id is not None
        }

        def build(
            component: SingleOccurrence | RecurringComponent,
            event_id: str,
            start: datetime.datetime,
        ) -> CalendarEvent:
            return CalendarEvent(
                id=event_id,
                title=component.summary,
                type=EventType.EXTERNAL,
                due_date=start,
                completed=False,
                completable=False,
                instance_date=date_key(start, self.tz),
                description=component.description,
                location=component.location,
                space=space,
                is_external=True,
                external_calendar_id=subscription_id,
                external_calendar_name=name,
                external_calendar_color=color,
            )

        events: list[CalendarEvent] = []
        for component in feed.recurring:
            try:
                occurrences = self.rrule_expander.occurrences(component, window_start, window_end)
            except (ValueError, TypeError, OverflowError) as e:
                logger.warning(
                    "Skipping recurring event %s in subscription %s: %s",
                    component.uid,
                    subscription_id,
                    e,
                )
                continue
            for occurrence in occurrences:
                if (component.uid, occurrence) in overrides:
                    continue
                event_id = f"{component.key}-{epoch_ms(occurrence)}"
                events.append(build(component, event_id, occurrence))

        for single in feed.singles:
            if single.status == "CANCELLED":
                continue
            if not window_start <= single.start <= window_end:
                continue
            if single.recurrence_id is not None:
                event_id = f"{single.uid}-{epoch_ms(single.recurrence_id)}"
            else:
                event_id = single.key
            events.append(build(single, event_id, single.start))

        return events

    async def events_for_subscription(
        self,
        subscription: ExternalCalendarSubscription,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
    ) -> list[CalendarEvent]:
        """Normalized events for one subscription; any failure yields ``[]``."""
        try:
            feed = await asyncio.wait_for(
                self.fetch_and_parse(subscription.feed_url), timeout=self.fetch_timeout
            )
            events = self.normalize(
                feed,
                window_start,
                window_end,
                subscription_id=subscription.id,
                name=subscription.name,
                color=subscription.color,
                space=subscription.space,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Subscription %s (%s) timed out after %.1fs",
                subscription.id,
                subscription.feed_url,
                self.fetch_timeout,
            )
            return []
        except FeedError as e:
            logger.warning(
                "Subscription %s (%s) failed: %s", subscription.id, subscription.feed_url, e
            )
            return []
        except Exception:
            logger.exception(
                "Unexpected error ingesting subscription %s (%s)",
                subscription.id,
                subscription.feed_url,
            )
            return []

        logger.debug("Subscription %s contributed %d events", subscription.id, len(events))
        return events

    async def collect(
        self,
        subscriptions: Iterable[ExternalCalendarSubscription],
        window_start: datetime.datetime,
        window_end: datetime.datetime,
    ) -> list[CalendarEvent]:
        """Ingest several subscriptions with bounded concurrency.

        Returns:
            Events of all subscriptions, in subscription order
        """
        subscriptions = list(subscriptions)
        if not subscriptions:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def ingest_one(subscription: ExternalCalendarSubscription) -> list[CalendarEvent]:
            async with semaphore:
                return await self.events_for_subscription(subscription, window_start, window_end)

        results = await asyncio.gather(
            *(ingest_one(s) for s in subscriptions), return_exceptions=True
        )

        events: list[CalendarEvent] = []
        for subscription, result in zip(subscriptions, results):
            if isinstance(result, BaseException):
                logger.error("Subscription %s raised during ingestion: %s", subscription.id, result)
                continue
            events.extend(result)
        return events

    async def validate_feed_url(self, feed_url: str) -> ParsedFeed:
        """Check a candidate subscription URL by fetching and parsing it.

        The result is stored in the cache so the first query after saving is warm.

        Args:
            feed_url: Candidate URL

        Returns:
            Parsed feed

        Raises:
            SubscriptionValidationError: With a user-facing reason
        """
        try:
            validate_feed_scheme(feed_url)
        except FeedURLError as e:
            raise SubscriptionValidationError(str(e)) from e

        self.cache.invalidate(feed_url)
        try:
            return await asyncio.wait_for(self.fetch_and_parse(feed_url), timeout=self.fetch_timeout)
        except asyncio.TimeoutError as e:
            raise SubscriptionValidationError(
                f"Failed to fetch calendar: no response within {self.fetch_timeout:g}s"
            ) from e
        except FeedError as e:
            logger.info("Feed validation failed for %s: %s", feed_url, e)
            raise SubscriptionValidationError(f"Failed to fetch or parse calendar: {e}") from e
