"""
Occurrence generator for recurrence rules.

All recurrence arithmetic is done on civil (wall-clock) dates and times. An
occurrence is projected to an absolute instant through the calendar timezone
only when it is emitted, so DST transitions change the absolute duration of an
occurrence but never its wall-clock start.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

import pytz
from dateutil.relativedelta import relativedelta

from .errors import GenerationBoundsExceeded
from .rules import Count, Pattern, RecurrenceRule, Until, Weekday


@dataclass(frozen=True)
class OccurrenceInstant:
    index: int
    civil_start: datetime
    civil_end: datetime
    start: datetime
    end: datetime


def get_timezone(tz: Union[str, pytz.BaseTzInfo]) -> pytz.BaseTzInfo:
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def localize(civil: datetime, tz: pytz.BaseTzInfo) -> datetime:
    """
    Resolve a civil datetime to an aware instant.

    Times inside a DST gap move forward by the size of the gap; times that
    occur twice resolve to the earlier instant.
    """
    try:
        return tz.localize(civil, is_dst=None)
    except pytz.AmbiguousTimeError:
        return tz.localize(civil, is_dst=True)
    except pytz.NonExistentTimeError:
        return tz.normalize(tz.localize(civil, is_dst=False))


def week_start(value: date) -> date:
    """Sunday of the calendar week containing ``value``"""
    return value - timedelta(days=int(Weekday.from_date(value)))


def _weekly_offsets(rule: RecurrenceRule, anchor_date: date):
    # Anchor week: the anchor itself, then the selected days after it
    anchor_offset = int(Weekday.from_date(anchor_date))
    offsets = [int(day) for day in rule.ordered_days] or [anchor_offset]
    first_week = [anchor_offset] + [offset for offset in offsets if offset > anchor_offset]
    return offsets, first_week


def civil_date_for_index(rule: RecurrenceRule, anchor_date: date, index: int) -> date:
    """Civil date of occurrence ``index``, ignoring termination"""
    if index < 0:
        raise ValueError("Occurrence index must not be negative")

    if rule.pattern == Pattern.DAILY:
        return anchor_date + timedelta(days=index * rule.interval)

    if rule.pattern == Pattern.MONTHLY:
        # relativedelta clamps the 29th-31st to the last day of shorter months
        return anchor_date + relativedelta(months=index * rule.interval)

    if rule.pattern == Pattern.YEARLY:
        return anchor_date + relativedelta(years=index * rule.interval)

    offsets, first_week = _weekly_offsets(rule, anchor_date)
    base = week_start(anchor_date)
    if index < len(first_week):
        return base + timedelta(days=first_week[index])
    week_number, position = divmod(index - len(first_week), len(offsets))
    week_number += 1
    return base + timedelta(weeks=week_number * rule.interval, days=offsets[position])


def is_clamped(rule: RecurrenceRule, anchor_date: date, index: int) -> bool:
    """True when occurrence ``index`` was pulled back to the end of a shorter month"""
    if rule.pattern not in (Pattern.MONTHLY, Pattern.YEARLY):
        return False
    return civil_date_for_index(rule, anchor_date, index).day != anchor_date.day


def within_termination(rule: RecurrenceRule, index: int, civil_date: date) -> bool:
    termination = rule.termination
    if isinstance(termination, Count):
        return index < termination.occurrences
    if isinstance(termination, Until):
        return civil_date <= termination.date
    return False


def index_lower_bound(rule: RecurrenceRule, anchor_date: date, target_date: date) -> int:
    """
    Return an index that is never past the first occurrence dated on or
    after ``target_date``. Uses the pattern step instead of walking from 0.
    """
    if target_date <= anchor_date:
        return 0

    if rule.pattern == Pattern.DAILY:
        return (target_date - anchor_date).days // rule.interval

    if rule.pattern == Pattern.MONTHLY:
        months = (target_date.year - anchor_date.year) * 12 + target_date.month - anchor_date.month
        return months // rule.interval

    if rule.pattern == Pattern.YEARLY:
        return (target_date.year - anchor_date.year) // rule.interval

    offsets, first_week = _weekly_offsets(rule, anchor_date)
    weeks = (target_date - week_start(anchor_date)).days // 7
    included_week = weeks // rule.interval
    if included_week == 0:
        return 0
    return len(first_week) + (included_week - 1) * len(offsets)


def _build_instant(rule, anchor_start, duration, tz, index) -> Optional[OccurrenceInstant]:
    civil_date = civil_date_for_index(rule, anchor_start.date(), index)
    if not within_termination(rule, index, civil_date):
        return None
    civil_start = datetime.combine(civil_date, anchor_start.time())
    civil_end = civil_start + duration
    return OccurrenceInstant(
        index=index,
        civil_start=civil_start,
        civil_end=civil_end,
        start=localize(civil_start, tz),
        end=localize(civil_end, tz),
    )


def occurrence_at(
    rule: RecurrenceRule,
    anchor_start: datetime,
    anchor_end: datetime,
    tz,
    index: int,
) -> Optional[OccurrenceInstant]:
    """The occurrence at ``index``, or None when the series ends before it"""
    return _build_instant(rule, anchor_start, anchor_end - anchor_start, get_timezone(tz), index)


def generate(
    rule: RecurrenceRule,
    anchor_start: datetime,
    anchor_end: datetime,
    tz,
    start_index: int = 0,
    limit: Optional[int] = None,
) -> Iterator[OccurrenceInstant]:
    """
    Lazily enumerate the occurrences of a series from ``start_index``.

    The anchor is occurrence 0. The sequence is finite because every rule
    terminates by count or by date, and it can be restarted at any index.

    Args:
        rule: validated recurrence rule
        anchor_start: civil start of the first occurrence
        anchor_end: civil end of the first occurrence
        tz: IANA name or pytz timezone of the owning calendar
        start_index: first index to emit
        limit: maximum number of occurrences to emit

    Raises:
        GenerationBoundsExceeded: when more than ``limit`` occurrences remain
    """
    zone = get_timezone(tz)
    duration = anchor_end - anchor_start
    index = start_index
    emitted = 0
    while True:
        instant = _build_instant(rule, anchor_start, duration, zone, index)
        if instant is None:
            return
        if limit is not None and emitted >= limit:
            raise GenerationBoundsExceeded(limit)
        yield instant
        emitted += 1
        index += 1
