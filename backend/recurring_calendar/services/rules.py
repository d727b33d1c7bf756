"""
Recurrence rule model and validation.

A rule is a frozen value: a pattern, an interval, a weekday set (WEEKLY only)
and exactly one termination, either ``Count`` or ``Until``.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from dateutil.rrule import MO, TU, WE, TH, FR, SA, SU
from django.utils.dateparse import parse_date

from .errors import RuleValidationError, ValidationErrorKind


class Pattern(str, Enum):
    DAILY = 'DAILY'
    WEEKLY = 'WEEKLY'
    MONTHLY = 'MONTHLY'
    YEARLY = 'YEARLY'


class Weekday(IntEnum):
    """Weekdays numbered in calendar-week order, Sunday first"""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def from_date(cls, value: Union[date, datetime]) -> 'Weekday':
        # date.weekday() is Monday=0
        return cls((value.weekday() + 1) % 7)


# Mapping weekdays to dateutil constants, used for BYDAY rendering
WEEKDAY_MAP = {
    Weekday.SUNDAY: SU, Weekday.MONDAY: MO, Weekday.TUESDAY: TU,
    Weekday.WEDNESDAY: WE, Weekday.THURSDAY: TH, Weekday.FRIDAY: FR,
    Weekday.SATURDAY: SA,
}


@dataclass(frozen=True)
class Count:
    occurrences: int


@dataclass(frozen=True)
class Until:
    date: date


Termination = Union[Count, Until]


@dataclass(frozen=True)
class RecurrenceRule:
    pattern: Pattern
    interval: int
    termination: Termination
    days_of_week: FrozenSet[Weekday] = field(default_factory=frozenset)

    @property
    def ordered_days(self):
        return sorted(self.days_of_week)


def validate(rule: RecurrenceRule, anchor_start: datetime) -> RecurrenceRule:
    """
    Validate a rule against the series anchor and return the normalized rule.

    Weekdays given for a non-WEEKLY pattern are discarded rather than
    rejected. For WEEKLY rules the anchor's own weekday is added to the set,
    so the anchor is always part of the weekly pattern.

    Raises:
        RuleValidationError: with the failing ``kind``
    """
    if rule.interval is None or rule.interval < 1:
        raise RuleValidationError(
            ValidationErrorKind.INVALID_INTERVAL,
            "Interval must be a positive integer",
        )

    termination = rule.termination
    if isinstance(termination, Count):
        if termination.occurrences is None or termination.occurrences <= 0:
            raise RuleValidationError(
                ValidationErrorKind.NON_POSITIVE_COUNT,
                "Occurrence count must be positive",
            )
    elif isinstance(termination, Until):
        if termination.date < anchor_start.date():
            raise RuleValidationError(
                ValidationErrorKind.UNTIL_BEFORE_ANCHOR,
                "Until date is before the first occurrence",
            )
    else:
        raise RuleValidationError(
            ValidationErrorKind.AMBIGUOUS_TERMINATION,
            "Exactly one of occurrences or untilDate is required",
        )

    if rule.pattern == Pattern.WEEKLY:
        if not rule.days_of_week:
            raise RuleValidationError(
                ValidationErrorKind.MISSING_WEEKDAYS,
                "Weekly recurrence requires at least one day of the week",
            )
        days = frozenset(rule.days_of_week) | {Weekday.from_date(anchor_start)}
        return replace(rule, days_of_week=days)

    if rule.days_of_week:
        return replace(rule, days_of_week=frozenset())
    return rule


def _parse_weekdays(values: Optional[Iterable[Any]]) -> FrozenSet[Weekday]:
    days = set()
    for value in values or []:
        try:
            days.add(Weekday[str(value).upper()])
        except KeyError:
            raise RuleValidationError(
                ValidationErrorKind.UNKNOWN_WEEKDAY,
                f"Unknown day of week: {value}",
            ) from None
    return frozenset(days)


def _as_int(value: Any, kind: ValidationErrorKind) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise RuleValidationError(kind, f"Expected an integer, got {value!r}") from None


def parse_rule(payload: Dict[str, Any]) -> RecurrenceRule:
    """
    Build a rule from the authoring shape::

        {"pattern": "WEEKLY", "interval": 1, "daysOfWeek": ["MONDAY"],
         "occurrences": 6}

    with exactly one of ``occurrences`` / ``untilDate``. Only the structure is
    checked here; call ``validate`` for the semantic checks.
    """
    try:
        pattern = Pattern(str(payload.get('pattern', '')).upper())
    except ValueError:
        raise RuleValidationError(
            ValidationErrorKind.UNKNOWN_PATTERN,
            f"Pattern must be one of: {[p.value for p in Pattern]}",
        ) from None

    occurrences = payload.get('occurrences')
    until_value = payload.get('untilDate')
    if (occurrences is None) == (until_value is None):
        raise RuleValidationError(
            ValidationErrorKind.AMBIGUOUS_TERMINATION,
            "Exactly one of occurrences or untilDate is required",
        )

    if occurrences is not None:
        termination = Count(_as_int(occurrences, ValidationErrorKind.NON_POSITIVE_COUNT))
    else:
        until_date = until_value if isinstance(until_value, date) else parse_date(str(until_value))
        if until_date is None:
            raise RuleValidationError(
                ValidationErrorKind.AMBIGUOUS_TERMINATION,
                "untilDate must be a YYYY-MM-DD date",
            )
        termination = Until(until_date)

    interval = payload.get('interval')
    return RecurrenceRule(
        pattern=pattern,
        interval=1 if interval is None else _as_int(interval, ValidationErrorKind.INVALID_INTERVAL),
        termination=termination,
        days_of_week=_parse_weekdays(payload.get('daysOfWeek')),
    )


def rule_to_dict(rule: RecurrenceRule) -> Dict[str, Any]:
    """Inverse of ``parse_rule``"""
    data = {
        'pattern': rule.pattern.value,
        'interval': rule.interval,
        'daysOfWeek': [day.name for day in rule.ordered_days],
    }
    if isinstance(rule.termination, Count):
        data['occurrences'] = rule.termination.occurrences
    else:
        data['untilDate'] = rule.termination.date.isoformat()
    return data


def to_rrule_string(rule: RecurrenceRule) -> str:
    """Render the rule as an RRULE value, e.g. FREQ=WEEKLY;INTERVAL=1;BYDAY=MO,WE;WKST=SU;COUNT=6"""
    parts = [f"FREQ={rule.pattern.value}", f"INTERVAL={rule.interval}"]
    if rule.pattern == Pattern.WEEKLY:
        if rule.days_of_week:
            parts.append("BYDAY=" + ",".join(str(WEEKDAY_MAP[day]) for day in rule.ordered_days))
        # Weeks start on Sunday, which matters once the interval skips weeks
        parts.append("WKST=SU")
    if isinstance(rule.termination, Count):
        parts.append(f"COUNT={rule.termination.occurrences}")
    else:
        parts.append(f"UNTIL={rule.termination.date.strftime('%Y%m%d')}")
    return ";".join(parts)
