"""
iCalendar export of calendars.

A recurring series is written as one master VEVENT carrying an RRULE, with an
EXDATE for each cancelled occurrence and a separate VEVENT (same UID, with
RECURRENCE-ID) for each modified occurrence.
"""

import logging
from datetime import datetime, time
from typing import Iterable

import pytz
from django.db import transaction
from icalendar import Calendar as ICalendar, Event as ICalEvent, vRecur

from ..models import Calendar, EventSeries
from .generator import get_timezone, localize, occurrence_at
from .overlay import index_overrides, resolve_occurrence
from .rules import Until, to_rrule_string
from .series import OverrideAction, SeriesDefinition

logger = logging.getLogger(__name__)

PRODID = '-//recurring-calendar//EN'


def event_uid(series: SeriesDefinition) -> str:
    return f"{series.series_id}@recurring-calendar"


def _ical_value(instant, civil, is_all_day):
    return civil.date() if is_all_day else instant


def _until_instant(series: SeriesDefinition) -> datetime:
    """Last moment of the UNTIL date in the series timezone, as UTC"""
    last_moment = datetime.combine(series.rule.termination.date, time(23, 59, 59))
    return localize(last_moment, get_timezone(series.timezone)).astimezone(pytz.utc)


def _master_event(series: SeriesDefinition) -> ICalEvent:
    tz = get_timezone(series.timezone)
    event = ICalEvent()
    event.add('uid', event_uid(series))
    event.add('summary', series.subject)
    event.add('dtstart', _ical_value(localize(series.anchor_start, tz), series.anchor_start, series.is_all_day))
    event.add('dtend', _ical_value(localize(series.anchor_end, tz), series.anchor_end, series.is_all_day))
    event.add('status', series.status)
    if series.description:
        event.add('description', series.description)
    if series.location:
        event.add('location', series.location)
    return event


def series_components(series: SeriesDefinition, overrides: Iterable) -> list:
    """Build the VEVENT components for one series"""
    master = _master_event(series)
    if not series.is_recurring:
        return [master]

    recur = vRecur.from_ical(to_rrule_string(series.rule))
    if isinstance(series.rule.termination, Until) and not series.is_all_day:
        # UNTIL must be a UTC date-time when DTSTART carries a TZID
        recur['UNTIL'] = [_until_instant(series)]
    master.add('rrule', recur)
    components = [master]
    excluded = []

    for index, override in sorted(index_overrides(series, overrides).items()):
        instant = occurrence_at(series.rule, series.anchor_start, series.anchor_end, series.timezone, index)
        if instant is None:
            # Beyond the end of the series
            continue
        original = _ical_value(instant.start, instant.civil_start, series.is_all_day)
        if override.action == OverrideAction.CANCELLED:
            excluded.append(original)
            continue

        occurrence = resolve_occurrence(series, instant, override)
        event = ICalEvent()
        event.add('uid', event_uid(series))
        event.add('recurrence-id', original)
        event.add('summary', occurrence.subject)
        event.add('dtstart', _ical_value(occurrence.start, occurrence.civil_start, series.is_all_day))
        event.add('dtend', _ical_value(occurrence.end, occurrence.civil_end, series.is_all_day))
        event.add('status', occurrence.status)
        if occurrence.description:
            event.add('description', occurrence.description)
        if occurrence.location:
            event.add('location', occurrence.location)
        components.append(event)

    if excluded:
        master.add('exdate', excluded)
    return components


def export_calendar(calendar: Calendar) -> bytes:
    """Serialize every series of the calendar as an iCalendar document"""
    ical = ICalendar()
    ical.add('prodid', PRODID)
    ical.add('version', '2.0')
    ical.add('x-wr-calname', calendar.name)
    ical.add('x-wr-timezone', calendar.timezone)

    with transaction.atomic():
        series_queryset = (
            EventSeries.objects.filter(calendar=calendar)
            .select_related('calendar')
            .prefetch_related('overrides')
        )
        count = 0
        for series in series_queryset:
            overrides = [override.to_value() for override in series.overrides.all()]
            for component in series_components(series.to_definition(), overrides):
                ical.add_component(component)
            count += 1

    logger.info("Exported %d series from calendar %s", count, calendar.pk)
    return ical.to_ical()
