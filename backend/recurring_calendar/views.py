"""
Views for the calendar API.
Provides CRUD operations for calendars and event series, occurrence-level
operations, windowed occurrence queries and iCalendar export.
"""

import logging
import uuid
from dataclasses import replace
from datetime import timezone as dt_timezone

import pytz
from django.db import transaction
from django.db.models import F
from django.http import HttpResponse, JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.request import Request

from .models import Calendar, EventSeries, OccurrenceOverride
from .serializers import CalendarSerializer, EventSeriesSerializer, OccurrenceOverrideSerializer
from .services.errors import GenerationBoundsExceeded
from .services.export import export_calendar
from .services.expand import expand_all_series, expand_series, find_conflicts
from .services.generator import is_clamped, occurrence_at
from .services.rules import Count, rule_to_dict

logger = logging.getLogger(__name__)

OVERRIDE_FIELDS = ['subject', 'start', 'end', 'location', 'description']


class EventConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Event conflict detected! Overlaps with existing event.'
    default_code = 'conflict'


class CalendarViewSet(viewsets.ModelViewSet):
    """ViewSet for CRUD operations on Calendar, plus iCalendar export."""
    queryset = Calendar.objects.all()
    serializer_class = CalendarSerializer

    @action(detail=True, methods=['get'])
    def export(self, request: Request, pk=None):
        calendar = self.get_object()
        response = HttpResponse(export_calendar(calendar), content_type='text/calendar; charset=utf-8')
        response['Content-Disposition'] = f'attachment; filename="calendar-{calendar.pk}.ics"'
        return response


class EventSeriesViewSet(viewsets.ModelViewSet):
    """
    ViewSet for CRUD operations on EventSeries.
    Provides additional actions for occurrence-level operations.
    """
    queryset = EventSeries.objects.select_related('calendar').prefetch_related('overrides')
    serializer_class = EventSeriesSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        calendar_id = self.request.query_params.get('calendar')
        if calendar_id:
            queryset = queryset.filter(calendar_id=calendar_id)
        return queryset

    def perform_create(self, serializer):
        data = serializer.validated_data
        with transaction.atomic():
            if data.get('rule') is None:
                conflicts = find_conflicts(data['calendar'], data['anchor_start'], data['anchor_end'])
                if conflicts:
                    logger.info("Rejected event '%s': %d conflicts", data['subject'], len(conflicts))
                    raise EventConflict()
            serializer.save()

    def perform_update(self, serializer):
        with transaction.atomic():
            EventSeries.objects.select_for_update().filter(pk=serializer.instance.pk).first()
            serializer.save()

    @action(detail=True, methods=['post', 'delete'], url_path='occurrence')
    def occurrence(self, request: Request, pk=None):
        """
        Handle occurrence-level operations (create/update overrides or cancel occurrences).

        POST - Create or update a per-occurrence override:
        {
            "occurrenceIndex": 2,
            "action": "MODIFIED",  // or "CANCELLED"
            "startTime": "2024-01-05T10:00:00",  // optional
            "endTime": "2024-01-05T11:00:00",  // optional
            "subject": "Moved",  // optional
            "location": "Room 2",  // optional
            "description": "Notes"  // optional
        }

        DELETE - Cancel a specific occurrence:
        Query parameter: occurrence_index
        """
        series = self.get_object()
        if not series.is_recurring:
            return Response(
                {'error': 'Only recurring series have occurrences'},
                status=status.HTTP_400_BAD_REQUEST
            )

        if request.method == 'DELETE':
            return self._handle_cancel_occurrence(request, series)
        else:  # POST
            return self._handle_create_override(request, series)

    @staticmethod
    def _occurrence_exists(series, index):
        return occurrence_at(
            series.rule, series.anchor_start, series.anchor_end, series.calendar.timezone, index
        ) is not None

    @staticmethod
    def _save_override(series, index, fields):
        with transaction.atomic():
            series = EventSeries.objects.select_for_update().get(pk=series.pk)
            override, created = OccurrenceOverride.objects.update_or_create(
                series=series,
                occurrence_index=index,
                defaults=dict(fields, rule_version=series.rule_version),
            )
            EventSeries.objects.filter(pk=series.pk).update(override_version=F('override_version') + 1)
        logger.info(
            "%s override %s for occurrence %d of series %s",
            'Created' if created else 'Updated', override.action, index, series.series_id,
        )
        return override, created

    def _handle_create_override(self, request: Request, series):
        serializer = OccurrenceOverrideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        index = data['occurrence_index']
        # The posted field set replaces any earlier override for this index
        fields = {field: data.get(field) for field in OVERRIDE_FIELDS}
        fields['action'] = data['action']

        if not self._occurrence_exists(series, index):
            return Response(
                {'error': f'Series has no occurrence {index}'},
                status=status.HTTP_400_BAD_REQUEST
            )

        override, created = self._save_override(series, index, fields)
        return Response(
            OccurrenceOverrideSerializer(override).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK
        )

    def _handle_cancel_occurrence(self, request: Request, series):
        """
        Mark a specific occurrence as cancelled.

        Query parameter:
        - occurrence_index: 0-based occurrence index
        """
        index_str = request.query_params.get('occurrence_index')
        if index_str is None:
            return Response(
                {'error': 'occurrence_index query parameter is required'},
                status=status.HTTP_400_BAD_REQUEST
            )
        try:
            index = int(index_str)
        except ValueError:
            index = -1
        if index < 0 or not self._occurrence_exists(series, index):
            return Response(
                {'error': f'Series has no occurrence {index_str}'},
                status=status.HTTP_400_BAD_REQUEST
            )

        fields = dict.fromkeys(OVERRIDE_FIELDS)
        fields['action'] = 'CANCELLED'
        self._save_override(series, index, fields)
        return Response({'message': 'Occurrence cancelled successfully'}, status=status.HTTP_200_OK)

    @action(detail=True, methods=['post'])
    def split(self, request: Request, pk=None):
        """
        Split a series at a specific occurrence ("Edit this and following").

        Expected payload:
        {
            "occurrenceIndex": 3,
            "updates": {  // optional updates to apply to the new series
                "subject": "New Subject",
                "location": "Room 2",
                // ... other authoring fields
            }
        }

        The original series keeps occurrences before the split point; the new
        series starts at the split occurrence. Overrides from the split point
        onwards are removed. Returns both series.
        """
        original_series = self.get_object()
        if not original_series.is_recurring:
            return Response(
                {'error': 'Only recurring series can be split'},
                status=status.HTTP_400_BAD_REQUEST
            )

        try:
            index = int(request.data.get('occurrenceIndex'))
        except (TypeError, ValueError):
            return Response(
                {'error': 'occurrenceIndex is required'},
                status=status.HTTP_400_BAD_REQUEST
            )
        rule = original_series.rule
        instant = occurrence_at(
            rule, original_series.anchor_start, original_series.anchor_end,
            original_series.calendar.timezone, index,
        ) if index > 0 else None
        if instant is None:
            return Response(
                {'error': 'occurrenceIndex must reference an occurrence after the first'},
                status=status.HTTP_400_BAD_REQUEST
            )
        # A new series anchored on a shortened month-end date would shift every later occurrence
        if is_clamped(rule, original_series.anchor_start.date(), index):
            return Response(
                {'error': f'Occurrence {index} falls on a shortened month; split at another occurrence'},
                status=status.HTTP_400_BAD_REQUEST
            )

        new_rule = rule
        if isinstance(rule.termination, Count):
            new_rule = replace(rule, termination=Count(rule.termination.occurrences - index))

        # Build the new series from the original's authoring shape
        new_series_data = {
            'calendarId': original_series.calendar_id,
            'subject': original_series.subject,
            'description': original_series.description,
            'location': original_series.location,
            'isAllDay': original_series.is_all_day,
            'status': original_series.status,
            'startTime': instant.civil_start.isoformat(),
            'endTime': instant.civil_end.isoformat(),
            'recurrence': rule_to_dict(new_rule),
        }
        updates = request.data.get('updates') or {}
        for field, value in updates.items():
            if field in new_series_data:
                new_series_data[field] = value

        new_serializer = EventSeriesSerializer(data=new_series_data)
        new_serializer.is_valid(raise_exception=True)

        with transaction.atomic():
            original_series = EventSeries.objects.select_for_update().get(pk=original_series.pk)
            # Truncate the original series; indices before the split keep their meaning
            original_series.set_rule(replace(rule, termination=Count(index)))
            original_series.save()
            dropped, _ = original_series.overrides.filter(occurrence_index__gte=index).delete()
            EventSeries.objects.filter(pk=original_series.pk).update(override_version=F('override_version') + 1)
            new_series = new_serializer.save()
            original_series.refresh_from_db()

        logger.info(
            "Split series %s at occurrence %d into %s (%d overrides dropped)",
            original_series.series_id, index, new_series.series_id, dropped,
        )
        return Response({
            'original_series': EventSeriesSerializer(original_series).data,
            'new_series': EventSeriesSerializer(new_series).data,
        }, status=status.HTTP_201_CREATED)


def _parse_window_bound(value):
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError("Invalid datetime format")
    # Ensure timezone-aware
    if timezone.is_naive(parsed):
        parsed = parsed.replace(tzinfo=dt_timezone.utc)
    return parsed


def occurrences_view(request):
    """
    Get materialized occurrences within a time window.

    Query parameters:
    - start: ISO datetime string (required)
    - end: ISO datetime string (required)
    - series: series UUID or "all" (optional, default "all")
    - calendar: calendar id (optional)
    - tz: Timezone name (optional, e.g., 'Europe/London')

    Naive window bounds are read as UTC. Returns occurrences with absolute
    times, and local times if tz is provided.
    """
    start_str = request.GET.get('start')
    end_str = request.GET.get('end')
    series_param = request.GET.get('series', 'all')
    calendar_param = request.GET.get('calendar')
    tz_name = request.GET.get('tz')

    if not start_str or not end_str:
        return JsonResponse(
            {'error': 'Both start and end query parameters are required'},
            status=400
        )

    try:
        window_start = _parse_window_bound(start_str)
        window_end = _parse_window_bound(end_str)
    except (ValueError, TypeError):
        return JsonResponse(
            {'error': 'start and end must be valid ISO datetime strings'},
            status=400
        )
    if window_end < window_start:
        return JsonResponse({'error': 'end must not be before start'}, status=400)

    # Validate timezone if provided
    local_tz = None
    if tz_name:
        try:
            local_tz = pytz.timezone(tz_name)
        except pytz.UnknownTimeZoneError:
            return JsonResponse(
                {'error': f'Invalid timezone: {tz_name}'},
                status=400
            )

    try:
        if series_param != 'all':
            try:
                series_id = uuid.UUID(series_param)
            except ValueError:
                return JsonResponse({'error': f'Invalid series id: {series_param}'}, status=400)
            series = EventSeries.objects.filter(series_id=series_id).first()
            if series is None:
                return JsonResponse({'error': 'Series not found'}, status=404)
            occurrences = expand_series(series, window_start, window_end)
        else:
            calendar = None
            if calendar_param:
                if not calendar_param.isdigit():
                    return JsonResponse({'error': f'Invalid calendar id: {calendar_param}'}, status=400)
                calendar = Calendar.objects.filter(pk=calendar_param).first()
                if calendar is None:
                    return JsonResponse({'error': 'Calendar not found'}, status=404)
            occurrences = expand_all_series(window_start, window_end, calendar=calendar)
    except GenerationBoundsExceeded as exc:
        return JsonResponse({'error': str(exc), 'limit': exc.limit}, status=400)

    # Add local time if timezone provided
    if local_tz:
        for occ in occurrences:
            occ['localStart'] = parse_datetime(occ['start']).astimezone(local_tz).isoformat()
            occ['localEnd'] = parse_datetime(occ['end']).astimezone(local_tz).isoformat()

    return JsonResponse({'occurrences': occurrences})
