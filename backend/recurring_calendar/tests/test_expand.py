"""
Test cases for the expansion service over stored series.
Tests windowed expansion, caching by version and conflict detection.
"""

from datetime import datetime, timedelta, timezone as dt_timezone

from django.core.cache import cache
from django.db.models import F
from django.test import TestCase, override_settings

from recurring_calendar.models import Calendar, EventSeries, OccurrenceOverride
from recurring_calendar.services.errors import GenerationBoundsExceeded
from recurring_calendar.services.expand import expand_all_series, expand_series, find_conflicts
from recurring_calendar.services.rules import Count, Pattern, RecurrenceRule, Weekday


def utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


class ExpandTestMixin:

    def setUp(self):
        cache.clear()
        self.calendar = Calendar.objects.create(name='Work', timezone='UTC')
        self.monday_9am = datetime(2024, 1, 1, 9, 0)

    def create_series(self, subject, start, minutes, rule=None, calendar=None):
        series = EventSeries(
            calendar=calendar or self.calendar,
            subject=subject,
            anchor_start=start,
            anchor_end=start + timedelta(minutes=minutes),
        )
        series.set_rule(rule)
        series.save()
        return series


class ExpandSeriesTest(ExpandTestMixin, TestCase):
    """Test expansion of a single stored series"""

    def setUp(self):
        super().setUp()
        self.series = self.create_series(
            'Team Sync', self.monday_9am, 60,
            RecurrenceRule(
                Pattern.WEEKLY, 1, Count(6),
                frozenset({Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY}),
            ),
        )

    def test_expand_series(self):
        occurrences = expand_series(self.series, utc(2024, 1, 1), utc(2024, 1, 31))

        self.assertEqual(len(occurrences), 6)
        self.assertEqual(occurrences[0]['subject'], 'Team Sync')
        self.assertEqual(occurrences[0]['series_id'], str(self.series.series_id))
        self.assertEqual(occurrences[0]['occurrence_index'], 0)
        self.assertEqual(occurrences[0]['start'], '2024-01-01T09:00:00+00:00')
        self.assertEqual(occurrences[0]['end'], '2024-01-01T10:00:00+00:00')
        self.assertEqual(occurrences[5]['civil_start'], '2024-01-12T09:00:00')

    def test_cancelled_occurrence(self):
        OccurrenceOverride.objects.create(series=self.series, occurrence_index=2, action='CANCELLED')

        occurrences = expand_series(self.series, utc(2024, 1, 1), utc(2024, 1, 31))
        self.assertEqual(len(occurrences), 5)
        self.assertNotIn('2024-01-05T09:00:00', [occ['civil_start'] for occ in occurrences])

    def test_cache_invalidated_by_override_version(self):
        window = (utc(2024, 1, 1), utc(2024, 1, 31))
        self.assertEqual(len(expand_series(self.series, *window)), 6)

        # Without a version bump the cached result is served
        OccurrenceOverride.objects.create(series=self.series, occurrence_index=0, action='CANCELLED')
        self.assertEqual(len(expand_series(self.series, *window)), 6)

        EventSeries.objects.filter(pk=self.series.pk).update(override_version=F('override_version') + 1)
        self.assertEqual(len(expand_series(self.series, *window)), 5)

    @override_settings(RECURRENCE_MAX_OCCURRENCES=3)
    def test_generation_limit_from_settings(self):
        with self.assertRaises(GenerationBoundsExceeded):
            expand_series(self.series, utc(2024, 1, 1), utc(2024, 1, 31))


class ExpandAllSeriesTest(ExpandTestMixin, TestCase):
    """Test expansion of multiple series together"""

    def setUp(self):
        super().setUp()
        self.window_start = utc(2024, 1, 1)
        self.window_end = utc(2024, 1, 7, 23, 59)

        self.create_series('Daily Meeting', self.monday_9am, 15, RecurrenceRule(Pattern.DAILY, 1, Count(30)))
        self.create_series(
            'Weekly Review', self.monday_9am + timedelta(hours=2), 60,
            RecurrenceRule(Pattern.WEEKLY, 1, Count(10), frozenset({Weekday.MONDAY})),
        )
        self.create_series('One-off Event', self.monday_9am + timedelta(days=3), 30)

        other = Calendar.objects.create(name='Home', timezone='America/New_York')
        self.create_series('Gym', self.monday_9am, 60, RecurrenceRule(Pattern.DAILY, 1, Count(5)), calendar=other)

    def test_multiple_series_expansion(self):
        all_occurrences = expand_all_series(self.window_start, self.window_end, calendar=self.calendar)

        # 7 daily + 1 weekly + 1 one-off
        self.assertEqual(len(all_occurrences), 9)
        one_off = next(occ for occ in all_occurrences if occ['subject'] == 'One-off Event')
        self.assertIsNone(one_off['series_id'])
        self.assertIsNone(one_off['occurrence_index'])

    def test_sorted_across_calendars(self):
        all_occurrences = expand_all_series(self.window_start, self.window_end)
        self.assertEqual(len(all_occurrences), 14)

        # New York 09:00 is 14:00 UTC
        gym = [occ for occ in all_occurrences if occ['subject'] == 'Gym']
        self.assertEqual(gym[0]['start'], '2024-01-01T09:00:00-05:00')

        starts = [datetime.fromisoformat(occ['start']) for occ in all_occurrences]
        self.assertEqual(starts, sorted(starts))


class FindConflictsTest(ExpandTestMixin, TestCase):
    """Test overlap detection against stored occurrences"""

    def setUp(self):
        super().setUp()
        self.standup = self.create_series(
            'Standup', self.monday_9am, 30, RecurrenceRule(Pattern.DAILY, 1, Count(5)),
        )

    def test_overlap_detected(self):
        conflicts = find_conflicts(self.calendar, datetime(2024, 1, 3, 9, 15), datetime(2024, 1, 3, 10, 0))
        self.assertEqual(len(conflicts), 1)
        self.assertEqual(conflicts[0].occurrence_index, 2)

    def test_adjacent_is_not_conflict(self):
        conflicts = find_conflicts(self.calendar, datetime(2024, 1, 3, 9, 30), datetime(2024, 1, 3, 10, 0))
        self.assertEqual(conflicts, [])

    def test_cancelled_occurrence_is_free(self):
        OccurrenceOverride.objects.create(series=self.standup, occurrence_index=2, action='CANCELLED')
        conflicts = find_conflicts(self.calendar, datetime(2024, 1, 3, 9, 0), datetime(2024, 1, 3, 9, 30))
        self.assertEqual(conflicts, [])

    def test_long_modified_occurrence_detected(self):
        # The first standup now runs until Jan 3 10:00
        OccurrenceOverride.objects.create(
            series=self.standup, occurrence_index=0, action='MODIFIED', end=datetime(2024, 1, 3, 10, 0),
        )
        conflicts = find_conflicts(self.calendar, datetime(2024, 1, 3, 9, 40), datetime(2024, 1, 3, 9, 50))
        self.assertEqual([occ.occurrence_index for occ in conflicts], [0])

    def test_exclude_series(self):
        conflicts = find_conflicts(
            self.calendar, datetime(2024, 1, 3, 9, 0), datetime(2024, 1, 3, 9, 30), exclude=self.standup,
        )
        self.assertEqual(conflicts, [])
