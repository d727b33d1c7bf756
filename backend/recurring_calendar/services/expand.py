"""
Service for expanding stored series into individual occurrences.
Bridges the Django models and the recurrence engine, and caches results.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional

from django.conf import settings
from django.core.cache import cache
from django.db import transaction

from ..models import Calendar, EventSeries
from .generator import get_timezone, localize, occurrence_at
from .materialize import DEFAULT_MAX_OCCURRENCES, materialize
from .series import MaterializedOccurrence, OverrideAction

logger = logging.getLogger(__name__)


def get_max_occurrences() -> int:
    return getattr(settings, 'RECURRENCE_MAX_OCCURRENCES', DEFAULT_MAX_OCCURRENCES)


def cache_key(series: EventSeries, window_start_utc: datetime, window_end_utc: datetime) -> str:
    return 'occurrences:{}:{}:{}:{}:{}'.format(
        series.series_id,
        window_start_utc.isoformat(),
        window_end_utc.isoformat(),
        series.rule_version,
        series.override_version,
    )


def materialize_series(series: EventSeries, window_start_utc: datetime, window_end_utc: datetime) -> List[MaterializedOccurrence]:
    """
    Materialize one series within the window, using the cache.

    The cache key carries the series' rule and override versions, so any
    mutation of the series or its overrides misses the old entry.
    """
    key = cache_key(series, window_start_utc, window_end_utc)
    cached = cache.get(key)
    if cached is not None:
        logger.debug("Cache hit for %s", key)
        return cached

    overrides = [override.to_value() for override in series.overrides.all()]
    occurrences = materialize(
        series.to_definition(),
        overrides,
        window_start_utc,
        window_end_utc,
        max_occurrences=get_max_occurrences(),
    )
    cache.set(key, occurrences, getattr(settings, 'RECURRENCE_CACHE_TIMEOUT', 300))
    logger.debug("Cached %d occurrences for %s", len(occurrences), key)
    return occurrences


def expand_series(series: EventSeries, window_start_utc: datetime, window_end_utc: datetime) -> List[Dict[str, Any]]:
    """
    Expand a series into individual occurrences within the given time window.
    Applies overrides (cancellations and modifications).

    Args:
        series: EventSeries to expand
        window_start_utc: Start of time window (inclusive, timezone-aware)
        window_end_utc: End of time window (inclusive, timezone-aware)

    Returns:
        List of occurrence dictionaries sorted by start
    """
    with transaction.atomic():
        # Re-read the row and its overrides together
        series = (
            EventSeries.objects.select_related('calendar')
            .prefetch_related('overrides')
            .get(pk=series.pk)
        )
        occurrences = materialize_series(series, window_start_utc, window_end_utc)
    return [occ.to_dict() for occ in occurrences]


def expand_all_series(
    window_start_utc: datetime,
    window_end_utc: datetime,
    calendar: Optional[Calendar] = None,
) -> List[Dict[str, Any]]:
    """
    Expand all series, optionally restricted to one calendar, within the window.

    Returns:
        List of all occurrence dictionaries from all series, sorted by start
    """
    all_occurrences = []

    with transaction.atomic():
        series_queryset = EventSeries.objects.select_related('calendar').prefetch_related('overrides')
        if calendar is not None:
            series_queryset = series_queryset.filter(calendar=calendar)

        for series in series_queryset:
            all_occurrences.extend(materialize_series(series, window_start_utc, window_end_utc))

    all_occurrences.sort(key=lambda occ: occ.start)
    return [occ.to_dict() for occ in all_occurrences]


def longest_duration(series: EventSeries) -> timedelta:
    """Longest civil duration among the series template and its modified occurrences"""
    longest = series.anchor_end - series.anchor_start
    if not series.is_recurring:
        return longest
    for override in series.overrides.all():
        if override.action != OverrideAction.MODIFIED.value or override.end is None:
            continue
        start = override.start
        if start is None:
            instant = occurrence_at(
                series.rule, series.anchor_start, series.anchor_end,
                series.calendar.timezone, override.occurrence_index,
            )
            if instant is None:
                continue
            start = instant.civil_start
        longest = max(longest, override.end - start)
    return longest


def find_conflicts(
    calendar: Calendar,
    civil_start: datetime,
    civil_end: datetime,
    exclude: Optional[EventSeries] = None,
) -> List[MaterializedOccurrence]:
    """
    Find occurrences in the calendar that overlap ``[civil_start, civil_end)``.
    Times are civil times in the calendar's timezone.
    """
    tz = get_timezone(calendar.timezone)
    start = localize(civil_start, tz)
    end = localize(civil_end, tz)

    conflicts = []
    with transaction.atomic():
        series_queryset = calendar.series.select_related('calendar').prefetch_related('overrides')
        if exclude is not None:
            series_queryset = series_queryset.exclude(pk=exclude.pk)

        for series in series_queryset:
            # Occurrences starting up to one duration before the range can still overlap it
            lookback = longest_duration(series) + timedelta(days=1)
            for occ in materialize_series(series, start - lookback, end):
                if occ.start < end and occ.end > start:
                    conflicts.append(occ)

    conflicts.sort(key=lambda occ: occ.start)
    return conflicts
