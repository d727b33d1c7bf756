"""
Windowed materialization: generated occurrences plus overrides, restricted to
a time window and sorted by start instant.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List

from .errors import GenerationBoundsExceeded
from .generator import generate, get_timezone, index_lower_bound, localize, occurrence_at
from .overlay import index_overrides, resolve_occurrence
from .series import (
    MaterializedOccurrence, OccurrenceOverride, OverrideAction, SeriesDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 10000


def single_occurrence(series: SeriesDefinition) -> MaterializedOccurrence:
    tz = get_timezone(series.timezone)
    return MaterializedOccurrence(
        subject=series.subject,
        start=localize(series.anchor_start, tz),
        end=localize(series.anchor_end, tz),
        civil_start=series.anchor_start,
        civil_end=series.anchor_end,
        description=series.description,
        location=series.location,
        is_all_day=series.is_all_day,
        status=series.status,
        event_id=series.event_id,
        calendar_id=series.calendar_id,
    )


def materialize(
    series: SeriesDefinition,
    overrides: Iterable[OccurrenceOverride],
    window_start: datetime,
    window_end: datetime,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> List[MaterializedOccurrence]:
    """
    Return the occurrences of ``series`` whose start lies in
    ``[window_start, window_end]``, with overrides applied.

    Only the index range that can reach the window is generated. The window
    bounds must be timezone-aware.

    Raises:
        GenerationBoundsExceeded: when the window spans more than
            ``max_occurrences`` candidate occurrences
    """
    if window_start.tzinfo is None or window_end.tzinfo is None:
        raise ValueError("Window bounds must be timezone-aware")
    if window_end < window_start:
        raise ValueError("Window end is before window start")

    if not series.is_recurring:
        occurrence = single_occurrence(series)
        return [occurrence] if window_start <= occurrence.start <= window_end else []

    rule = series.rule
    tz = get_timezone(series.timezone)
    by_index = index_overrides(series, overrides)

    # One day of slack on each side covers DST shifts between civil and absolute time
    first_date = window_start.astimezone(tz).date() - timedelta(days=1)
    last_date = window_end.astimezone(tz).date() + timedelta(days=1)
    start_index = index_lower_bound(rule, series.anchor_start.date(), first_date)

    results = []
    last_scanned = start_index - 1
    for instant in generate(rule, series.anchor_start, series.anchor_end, tz, start_index=start_index):
        if instant.civil_start.date() > last_date:
            break
        # Only candidates inside the scanned range count towards the limit
        if instant.index - start_index >= max_occurrences:
            logger.warning(
                "Series %s: window %s - %s exceeds %d occurrences",
                series.series_id, window_start, window_end, max_occurrences,
            )
            raise GenerationBoundsExceeded(max_occurrences)
        last_scanned = instant.index
        override = by_index.get(instant.index)
        if override is not None and override.action == OverrideAction.CANCELLED:
            continue
        results.append(resolve_occurrence(series, instant, override))

    # Modified occurrences moved into the window from outside the scanned range
    for index, override in by_index.items():
        if override.action != OverrideAction.MODIFIED or override.start is None:
            continue
        if index < 0 or start_index <= index <= last_scanned:
            continue
        instant = occurrence_at(rule, series.anchor_start, series.anchor_end, tz, index)
        if instant is None:
            continue
        results.append(resolve_occurrence(series, instant, override))

    results = [occ for occ in results if window_start <= occ.start <= window_end]
    results.sort(key=lambda occ: (occ.start, occ.occurrence_index))
    return results
