"""
Applies per-occurrence overrides (cancellations and modifications) on top of
generated occurrences.
"""

import warnings
from typing import Dict, Iterable, List

from .generator import OccurrenceInstant, get_timezone, localize
from .series import (
    MaterializedOccurrence, OccurrenceOverride, OverrideAction, SeriesDefinition,
)
from .errors import OverrideIndexStale


def index_overrides(series: SeriesDefinition, overrides: Iterable[OccurrenceOverride]) -> Dict[int, OccurrenceOverride]:
    """
    Key overrides by occurrence index. The last override for an index wins;
    overrides written against another rule version are dropped with a warning.
    """
    by_index = {}
    for override in overrides:
        if override.rule_version is not None and override.rule_version != series.rule_version:
            warnings.warn(
                OverrideIndexStale(
                    f"Override for occurrence {override.occurrence_index} of series "
                    f"{series.series_id} targets rule version {override.rule_version}, "
                    f"series is at {series.rule_version}; ignoring it"
                ),
                stacklevel=3,
            )
            continue
        by_index[override.occurrence_index] = override
    return by_index


def resolve_occurrence(
    series: SeriesDefinition,
    instant: OccurrenceInstant,
    override: OccurrenceOverride = None,
) -> MaterializedOccurrence:
    """Build the occurrence for one generated instant, applying a MODIFIED override"""
    if override is None:
        return MaterializedOccurrence(
            subject=series.subject,
            start=instant.start,
            end=instant.end,
            civil_start=instant.civil_start,
            civil_end=instant.civil_end,
            description=series.description,
            location=series.location,
            is_all_day=series.is_all_day,
            status=series.status,
            series_id=series.series_id,
            occurrence_index=instant.index,
            event_id=series.event_id,
            calendar_id=series.calendar_id,
        )

    # Fields missing from the override come from the series template
    civil_start = override.start if override.start is not None else instant.civil_start
    if override.end is not None:
        civil_end = override.end
    else:
        civil_end = civil_start + (series.anchor_end - series.anchor_start)
    tz = get_timezone(series.timezone)

    return MaterializedOccurrence(
        subject=override.subject if override.subject is not None else series.subject,
        start=localize(civil_start, tz),
        end=localize(civil_end, tz),
        civil_start=civil_start,
        civil_end=civil_end,
        description=override.description if override.description is not None else series.description,
        location=override.location if override.location is not None else series.location,
        is_all_day=series.is_all_day,
        status=series.status,
        series_id=series.series_id,
        occurrence_index=instant.index,
        event_id=series.event_id,
        calendar_id=series.calendar_id,
        is_exception=True,
        original_start=instant.start,
    )


def apply_overrides(
    series: SeriesDefinition,
    occurrences: Iterable[OccurrenceInstant],
    overrides: Iterable[OccurrenceOverride],
) -> List[MaterializedOccurrence]:
    """
    Apply overrides to generated occurrences.

    CANCELLED occurrences are omitted; MODIFIED occurrences take the override's
    fields. Overrides that match no generated index have no effect.
    """
    by_index = index_overrides(series, overrides)

    materialized = []
    for instant in occurrences:
        override = by_index.get(instant.index)
        if override is not None and override.action == OverrideAction.CANCELLED:
            continue
        materialized.append(resolve_occurrence(series, instant, override))
    return materialized
