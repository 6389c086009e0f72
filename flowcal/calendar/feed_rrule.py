"""Occurrence expansion for recurring external feed components."""

from __future__ import annotations

import datetime
import logging
import re
from dataclasses import dataclass
from typing import Any

from dateutil import parser as date_parser
from dateutil.rrule import rruleset, rrulestr

from ..core.timezone_utils import ZoneLike, ensure_utc, resolve_zone
from .models import RecurringComponent

logger = logging.getLogger(__name__)

_UNTIL_RE = re.compile(r"UNTIL=([0-9TZ]+)", re.IGNORECASE)


@dataclass
class FeedRRuleConfig:
    """Configuration for external RRULE expansion."""

    max_occurrences_per_rule: int = 500

    @classmethod
    def from_settings(cls, settings: Any) -> FeedRRuleConfig:
        return cls(max_occurrences_per_rule=getattr(settings, "max_occurrences_per_rule", 500))


class FeedRRuleExpander:
    """Expands a ``RecurringComponent`` into UTC occurrence instants.

    Rules are evaluated in the component's own zone (display zone for floating
    and all-day events) so wall-clock times survive DST changes.
    """

    def __init__(self, display_timezone: ZoneLike = None, config: FeedRRuleConfig | None = None):
        self.tz = resolve_zone(display_timezone)
        self.config = config or FeedRRuleConfig()

    def occurrences(
        self,
        component: RecurringComponent,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
    ) -> list[datetime.datetime]:
        """Return occurrence starts of ``component`` within [window_start, window_end].

        Args:
            component: Decoded recurring component
            window_start: Inclusive window start
            window_end: Inclusive window end

        Returns:
            UTC instants, ascending, EXDATEs removed

        Raises:
            ValueError: If the RRULE cannot be parsed
        """
        zone = resolve_zone(component.timezone) if component.timezone else self.tz
        dtstart = component.start.astimezone(zone)
        rule_text = self._normalize_until(component.rrule, zone)

        rule_set = rrulestr(f"RRULE:{rule_text}", dtstart=dtstart, forceset=True)
        if not isinstance(rule_set, rruleset):
            raise ValueError(f"unexpected rule type for {component.uid}")
        for exdate in component.exdates:
            rule_set.exdate(exdate.astimezone(zone))

        start_local = ensure_utc(window_start).astimezone(zone)
        end_local = ensure_utc(window_end).astimezone(zone)

        results: list[datetime.datetime] = []
        for occurrence in rule_set.xafter(start_local, inc=True):
            if occurrence > end_local:
                break
            if len(results) >= self.config.max_occurrences_per_rule:
                logger.warning(
                    "Recurring event %s hit the occurrence cap (%d)",
                    component.uid,
                    self.config.max_occurrences_per_rule,
                )
                break
            results.append(occurrence.astimezone(datetime.UTC))
        return results

    @staticmethod
    def _normalize_until(rule_text: str, zone: datetime.tzinfo) -> str:
        """Rewrite UNTIL as a UTC timestamp so it matches an aware DTSTART.

        A bare date means the end of that day in ``zone``; a floating time is
        read in ``zone``.
        """
        match = _UNTIL_RE.search(rule_text)
        if not match:
            return rule_text

        raw = match.group(1)
        if len(raw) == 8:
            until = datetime.datetime.strptime(raw, "%Y%m%d").replace(
                hour=23, minute=59, second=59, tzinfo=zone
            )
        else:
            until = date_parser.parse(raw)
            if until.tzinfo is None:
                until = until.replace(tzinfo=zone)
        until_utc = until.astimezone(datetime.UTC).strftime("%Y%m%dT%H%M%SZ")
        return rule_text[: match.start(1)] + until_utc + rule_text[match.end(1) :]
