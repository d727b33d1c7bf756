import logging
from dataclasses import replace

import pytz
from django.db import transaction
from django.db.models import F
from rest_framework import serializers

from .models import Calendar, EventSeries, OccurrenceOverride
from .services.errors import RuleValidationError
from .services.rules import Pattern, Weekday, parse_rule, rule_to_dict, to_rrule_string, validate
from .services.series import OverrideAction

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = ['subject', 'description', 'location', 'status', 'is_all_day']


class CalendarSerializer(serializers.ModelSerializer):
    """Serializer for Calendar model with timezone validation"""

    class Meta:
        model = Calendar
        fields = ['id', 'name', 'timezone', 'color', 'created_at']

    def validate_timezone(self, value):
        """Ensure timezone is a known IANA identifier"""
        if value not in pytz.all_timezones_set:
            raise serializers.ValidationError(f"Invalid timezone: {value}")
        return value


class OccurrenceOverrideSerializer(serializers.ModelSerializer):
    """Serializer for per-occurrence overrides, using the API's camelCase names"""

    occurrenceIndex = serializers.IntegerField(source='occurrence_index', min_value=0)
    action = serializers.ChoiceField(choices=[action.value for action in OverrideAction], default='MODIFIED')
    subject = serializers.CharField(required=False, allow_null=True, max_length=255)
    startTime = serializers.DateTimeField(source='start', required=False, allow_null=True)
    endTime = serializers.DateTimeField(source='end', required=False, allow_null=True)
    location = serializers.CharField(required=False, allow_null=True, allow_blank=True, max_length=255)
    description = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    ruleVersion = serializers.IntegerField(source='rule_version', read_only=True)

    class Meta:
        model = OccurrenceOverride
        fields = [
            'id', 'occurrenceIndex', 'action', 'subject', 'startTime', 'endTime',
            'location', 'description', 'ruleVersion',
        ]

    def validate(self, data):
        """Cross-field validation"""
        start = data.get('start')
        end = data.get('end')
        if start is not None and end is not None and end <= start:
            raise serializers.ValidationError({'endTime': "End time must be after start time"})

        if data.get('action') == OverrideAction.CANCELLED.value:
            # A cancellation carries no replacement fields
            for field in ('subject', 'start', 'end', 'location', 'description'):
                data[field] = None
        return data


class EventSeriesSerializer(serializers.ModelSerializer):
    """
    Authoring serializer for single events and recurring series.

    ``recurrence`` is either null or
    ``{pattern, interval, daysOfWeek, occurrences | untilDate}``.
    Times are civil times in the calendar's timezone.
    """

    seriesId = serializers.UUIDField(source='series_id', read_only=True)
    calendarId = serializers.PrimaryKeyRelatedField(source='calendar', queryset=Calendar.objects.all())
    startTime = serializers.DateTimeField(source='anchor_start')
    endTime = serializers.DateTimeField(source='anchor_end')
    isAllDay = serializers.BooleanField(source='is_all_day', required=False)
    recurrence = serializers.JSONField(required=False, allow_null=True, write_only=True)
    ruleVersion = serializers.IntegerField(source='rule_version', read_only=True)
    overrideVersion = serializers.IntegerField(source='override_version', read_only=True)
    overrides = OccurrenceOverrideSerializer(many=True, read_only=True)

    class Meta:
        model = EventSeries
        fields = [
            'id', 'seriesId', 'calendarId', 'subject', 'description', 'location',
            'isAllDay', 'status', 'startTime', 'endTime', 'recurrence',
            'ruleVersion', 'overrideVersion', 'overrides',
        ]

    def to_representation(self, instance):
        data = super().to_representation(instance)
        rule = instance.rule
        data['recurrence'] = rule_to_dict(rule) if rule else None
        data['rrule'] = to_rrule_string(rule) if rule else None
        return data

    def validate(self, data):
        """Cross-field validation, including the recurrence rule"""
        instance = self.instance
        start = data.get('anchor_start', instance.anchor_start if instance else None)
        end = data.get('anchor_end', instance.anchor_end if instance else None)
        if end <= start:
            raise serializers.ValidationError({'endTime': "End time must be after start time"})

        if 'recurrence' in data:
            payload = data.pop('recurrence')
            if payload is None:
                data['rule'] = None
            elif not isinstance(payload, dict):
                raise serializers.ValidationError({'recurrence': "Recurrence must be an object"})
            else:
                data['rule'] = self._validated_rule(parse_rule, payload, start)
        elif instance is not None and instance.is_recurring:
            # The existing rule must still hold against a moved anchor
            rule = self._moved_anchor_rule(instance.rule, instance.anchor_start, start)
            data['rule'] = self._validated_rule(lambda value: value, rule, start)
        return data

    @staticmethod
    def _moved_anchor_rule(rule, old_start, new_start):
        """Carry the anchor's weekly slot over to the new anchor weekday"""
        if rule.pattern != Pattern.WEEKLY:
            return rule
        old_day = Weekday.from_date(old_start)
        new_day = Weekday.from_date(new_start)
        if new_day in rule.days_of_week:
            return rule
        return replace(rule, days_of_week=(rule.days_of_week - {old_day}) | {new_day})

    @staticmethod
    def _validated_rule(build, value, anchor_start):
        try:
            return validate(build(value), anchor_start)
        except RuleValidationError as exc:
            raise serializers.ValidationError({'recurrence': exc.as_dict()})

    def create(self, validated_data):
        rule = validated_data.pop('rule', None)
        series = EventSeries(**validated_data)
        series.set_rule(rule)
        series.save()
        logger.info("Created series %s (%s)", series.series_id, series.pattern or 'single')
        return series

    def update(self, instance, validated_data):
        """
        Template-only edits are applied in place. Changing the rule, anchor or
        duration of a recurring series deletes it and creates a new series,
        since its overrides are keyed by occurrence index.
        """
        rule = validated_data.pop('rule', instance.rule)
        series_changed = (
            rule != instance.rule
            or validated_data.get('anchor_start', instance.anchor_start) != instance.anchor_start
            or validated_data.get('anchor_end', instance.anchor_end) != instance.anchor_end
            or validated_data.get('calendar', instance.calendar) != instance.calendar
        )

        with transaction.atomic():
            if series_changed and (instance.is_recurring or rule is not None):
                return self._recreate(instance, rule, validated_data)

            for field, value in validated_data.items():
                setattr(instance, field, value)
            instance.set_rule(rule)
            instance.save()
            # Cached occurrences carry the template fields
            EventSeries.objects.filter(pk=instance.pk).update(override_version=F('override_version') + 1)
            instance.refresh_from_db()
        return instance

    def _recreate(self, instance, rule, validated_data):
        fields = {
            'calendar': instance.calendar,
            'anchor_start': instance.anchor_start,
            'anchor_end': instance.anchor_end,
        }
        fields.update({field: getattr(instance, field) for field in TEMPLATE_FIELDS})
        fields.update(validated_data)

        old_series_id = instance.series_id
        instance.delete()
        series = EventSeries(**fields)
        series.set_rule(rule)
        series.save()
        logger.info("Replaced series %s with %s after a series-level edit", old_series_id, series.series_id)
        return series
