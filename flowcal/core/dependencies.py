"""Dependency injection container for the flowcal server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..calendar.feed_cache import FeedCache
from ..calendar.feed_fetcher import FeedFetcher, fetch_deadline_seconds
from ..calendar.feed_parser import FeedParser
from ..calendar.feed_rrule import FeedRRuleConfig, FeedRRuleExpander
from ..calendar.ingestion import ExternalFeedIngestion
from ..calendar.models import ParsedFeed
from ..calendar.recurrence import RecurrenceExpander
from ..domain.aggregator import CalendarAggregator
from ..domain.feed_generator import FeedGenerator
from ..domain.habit_schedule import HabitScheduler
from ..domain.store import CalendarStore, InMemoryCalendarStore
from .config_manager import AppSettings
from .timezone_utils import now_utc, resolve_zone

logger = logging.getLogger(__name__)


@dataclass
class AppDependencies:
    """Container for all application dependencies.

    Holds the shared components the route handlers need so tests can build
    an application around fakes.
    """

    # Configuration
    settings: AppSettings

    # Storage
    store: CalendarStore

    # Infrastructure
    feed_cache: FeedCache[ParsedFeed]
    fetcher: FeedFetcher

    # Business logic components
    ingestion: ExternalFeedIngestion
    expander: RecurrenceExpander
    habit_scheduler: HabitScheduler
    aggregator: CalendarAggregator
    feed_generator: FeedGenerator

    # Utility functions
    time_provider: Callable[[], Any]


class DependencyContainer:
    """Factory for building application dependencies."""

    @staticmethod
    def build_dependencies(
        settings: AppSettings,
        store: Optional[CalendarStore] = None,
        fetcher: Optional[FeedFetcher] = None,
        time_provider: Callable[[], Any] = now_utc,
    ) -> AppDependencies:
        """Build all application dependencies.

        Args:
            settings: Application settings
            store: Storage collaborator; an in-memory store seeded from
                ``settings.data_file`` is used when omitted
            fetcher: Feed fetcher override
            time_provider: Clock for the overdue pass

        Returns:
            AppDependencies container with all dependencies initialized
        """
        tz = resolve_zone(settings.display_timezone)

        if store is None:
            if settings.data_file is not None:
                store = InMemoryCalendarStore.from_json_file(settings.data_file)
            else:
                store = InMemoryCalendarStore()

        feed_cache: FeedCache[ParsedFeed] = FeedCache(ttl_seconds=settings.feed_cache_ttl_seconds)
        fetcher = fetcher or FeedFetcher(settings)
        ingestion = ExternalFeedIngestion(
            fetcher,
            feed_cache,
            parser=FeedParser(tz),
            rrule_expander=FeedRRuleExpander(tz, FeedRRuleConfig.from_settings(settings)),
            display_timezone=tz,
            fetch_timeout=fetch_deadline_seconds(settings),
            concurrency=settings.fetch_concurrency,
        )

        expander = RecurrenceExpander(tz)
        habit_scheduler = HabitScheduler(tz)
        aggregator = CalendarAggregator(
            store,
            ingestion,
            expander=expander,
            habit_scheduler=habit_scheduler,
            display_timezone=tz,
            overdue_lookback_days=settings.overdue_lookback_days,
            upcoming_days=settings.upcoming_days,
            clock=time_provider,
        )
        feed_generator = FeedGenerator(
            store,
            settings.calendar_secret,
            settings.frontend_url,
            feed_base_url=settings.feed_base_url,
            display_timezone=tz,
        )

        logger.debug("Dependencies built for display timezone %s", settings.display_timezone)
        return AppDependencies(
            settings=settings,
            store=store,
            feed_cache=feed_cache,
            fetcher=fetcher,
            ingestion=ingestion,
            expander=expander,
            habit_scheduler=habit_scheduler,
            aggregator=aggregator,
            feed_generator=feed_generator,
            time_provider=time_provider,
        )
