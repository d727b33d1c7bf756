import uuid

import pytz
from django.db import models
from django.core.exceptions import ValidationError

from .services.errors import RuleValidationError
from .services.rules import Count, Pattern, RecurrenceRule, Until, Weekday, validate
from .services.series import OccurrenceOverride as OverrideValue
from .services.series import OverrideAction, SeriesDefinition


# Choices defined at module level so they can be shared
PATTERN_CHOICES = [(pattern.value, pattern.value.title()) for pattern in Pattern]

TERMINATION_CHOICES = [
    ('COUNT', 'After a number of occurrences'),
    ('UNTIL', 'Until a date'),
]

STATUS_CHOICES = [
    ('CONFIRMED', 'Confirmed'),
    ('TENTATIVE', 'Tentative'),
]

ACTION_CHOICES = [(action.value, action.value.title()) for action in OverrideAction]


class Calendar(models.Model):
    """A named calendar. Its timezone resolves the civil times of its events."""

    name = models.CharField(max_length=255)
    timezone = models.CharField(max_length=64, default='UTC', help_text="IANA timezone identifier")
    color = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return f"{self.name} ({self.timezone})"

    def clean(self):
        if self.timezone not in pytz.all_timezones_set:
            raise ValidationError(f"Invalid timezone: {self.timezone}")


class EventSeries(models.Model):
    """
    A single event, or the master of a recurring series.
    Anchor times are civil times in the calendar's timezone.
    A null pattern means the event does not repeat.
    """

    series_id = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    calendar = models.ForeignKey(Calendar, on_delete=models.CASCADE, related_name='series')
    subject = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    location = models.CharField(max_length=255, blank=True)
    is_all_day = models.BooleanField(default=False)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='CONFIRMED')
    anchor_start = models.DateTimeField(help_text="Civil start of the first occurrence")
    anchor_end = models.DateTimeField(help_text="Civil end of the first occurrence")

    pattern = models.CharField(max_length=10, choices=PATTERN_CHOICES, null=True, blank=True)
    interval = models.PositiveIntegerField(default=1)
    days_of_week = models.JSONField(
        default=list,
        blank=True,
        help_text="List of weekday names like ['MONDAY', 'WEDNESDAY']; WEEKLY only",
    )
    termination = models.CharField(max_length=10, choices=TERMINATION_CHOICES, null=True, blank=True)
    occurrences = models.PositiveIntegerField(null=True, blank=True)
    until_date = models.DateField(null=True, blank=True)

    rule_version = models.PositiveIntegerField(default=1)
    override_version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['anchor_start']

    def __str__(self):
        return f"{self.subject} ({self.pattern or 'single'})"

    @property
    def is_recurring(self):
        return self.pattern is not None

    @property
    def rule(self):
        """The recurrence rule, or None for a single event"""
        if not self.pattern:
            return None
        if self.termination == 'COUNT':
            termination = Count(self.occurrences)
        else:
            termination = Until(self.until_date)
        return RecurrenceRule(
            pattern=Pattern(self.pattern),
            interval=self.interval,
            termination=termination,
            days_of_week=frozenset(Weekday[name] for name in self.days_of_week),
        )

    def set_rule(self, rule):
        """Store a validated rule on the row, or clear recurrence when rule is None"""
        if rule is None:
            self.pattern = None
            self.interval = 1
            self.days_of_week = []
            self.termination = None
            self.occurrences = None
            self.until_date = None
            return
        self.pattern = rule.pattern.value
        self.interval = rule.interval
        self.days_of_week = [day.name for day in rule.ordered_days]
        if isinstance(rule.termination, Count):
            self.termination = 'COUNT'
            self.occurrences = rule.termination.occurrences
            self.until_date = None
        else:
            self.termination = 'UNTIL'
            self.occurrences = None
            self.until_date = rule.termination.date

    def clean(self):
        """Validate model constraints"""
        if self.anchor_end <= self.anchor_start:
            raise ValidationError("End time must be after start time")
        if self.is_recurring:
            try:
                validate(self.rule, self.anchor_start)
            except RuleValidationError as exc:
                raise ValidationError(exc.message, code=exc.kind.value)

    def to_definition(self) -> SeriesDefinition:
        return SeriesDefinition(
            subject=self.subject,
            anchor_start=self.anchor_start,
            anchor_end=self.anchor_end,
            timezone=self.calendar.timezone,
            rule=self.rule,
            series_id=str(self.series_id),
            event_id=self.pk,
            calendar_id=self.calendar_id,
            description=self.description,
            location=self.location,
            is_all_day=self.is_all_day,
            status=self.status,
            rule_version=self.rule_version,
        )


class OccurrenceOverride(models.Model):
    """
    Cancellation or modification of one occurrence of a series, identified by
    its 0-based occurrence index.
    """

    series = models.ForeignKey(EventSeries, on_delete=models.CASCADE, related_name='overrides')
    occurrence_index = models.PositiveIntegerField()
    action = models.CharField(max_length=10, choices=ACTION_CHOICES)

    # Override fields (null = use series defaults)
    subject = models.CharField(max_length=255, null=True, blank=True)
    start = models.DateTimeField(null=True, blank=True)
    end = models.DateTimeField(null=True, blank=True)
    location = models.CharField(max_length=255, null=True, blank=True)
    description = models.TextField(null=True, blank=True)

    rule_version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ['series', 'occurrence_index']
        ordering = ['occurrence_index']

    def __str__(self):
        return f"{self.action.title()} occurrence {self.occurrence_index} of '{self.series.subject}'"

    def clean(self):
        """Validate override constraints"""
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise ValidationError("Override end must be after override start")

    def to_value(self) -> OverrideValue:
        return OverrideValue(
            occurrence_index=self.occurrence_index,
            action=OverrideAction(self.action),
            subject=self.subject,
            start=self.start,
            end=self.end,
            location=self.location,
            description=self.description,
            rule_version=self.rule_version,
        )
