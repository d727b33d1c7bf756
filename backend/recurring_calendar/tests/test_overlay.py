"""
Test cases for the exception overlay and windowed materialization.
"""

from datetime import date, datetime, timedelta, timezone as dt_timezone

from django.test import SimpleTestCase

from recurring_calendar.services.errors import GenerationBoundsExceeded, OverrideIndexStale
from recurring_calendar.services.generator import generate
from recurring_calendar.services.materialize import materialize
from recurring_calendar.services.overlay import apply_overrides
from recurring_calendar.services.rules import Count, Pattern, RecurrenceRule, Weekday
from recurring_calendar.services.series import OccurrenceOverride, OverrideAction, SeriesDefinition

MWF = frozenset({Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY})


def utc(*args):
    return datetime(*args, tzinfo=dt_timezone.utc)


def make_series(rule, start=datetime(2024, 1, 1, 9, 0), minutes=60, tz='UTC', **fields):
    return SeriesDefinition(
        subject=fields.pop('subject', 'Team Sync'),
        anchor_start=start,
        anchor_end=start + timedelta(minutes=minutes),
        timezone=tz,
        rule=rule,
        series_id='series-1',
        location=fields.pop('location', 'Room 1'),
        description=fields.pop('description', 'Weekly sync'),
        **fields
    )


class ApplyOverridesTest(SimpleTestCase):
    """Test override application on generated occurrences"""

    def setUp(self):
        self.series = make_series(RecurrenceRule(Pattern.WEEKLY, 1, Count(6), MWF))

    def overlay(self, overrides):
        occurrences = generate(self.series.rule, self.series.anchor_start, self.series.anchor_end, 'UTC')
        return apply_overrides(self.series, occurrences, overrides)

    def test_cancelled_occurrence_removed(self):
        result = self.overlay([OccurrenceOverride(2, OverrideAction.CANCELLED)])

        self.assertEqual(len(result), 5)
        self.assertNotIn(date(2024, 1, 5), [occ.civil_start.date() for occ in result])
        self.assertEqual([occ.occurrence_index for occ in result], [0, 1, 3, 4, 5])

    def test_modified_falls_back_to_template(self):
        result = self.overlay([OccurrenceOverride(1, OverrideAction.MODIFIED, subject='Moved sync')])
        modified = result[1]

        self.assertTrue(modified.is_exception)
        self.assertEqual(modified.subject, 'Moved sync')
        self.assertEqual(modified.location, 'Room 1')
        self.assertEqual(modified.description, 'Weekly sync')
        self.assertEqual(modified.civil_start, datetime(2024, 1, 3, 9, 0))
        self.assertEqual(modified.original_start, utc(2024, 1, 3, 9, 0))
        self.assertFalse(result[0].is_exception)

    def test_modified_start_keeps_duration(self):
        new_start = datetime(2024, 1, 3, 14, 0)
        result = self.overlay([OccurrenceOverride(1, OverrideAction.MODIFIED, start=new_start)])

        self.assertEqual(result[1].civil_start, new_start)
        self.assertEqual(result[1].civil_end, new_start + timedelta(hours=1))
        self.assertEqual(result[1].start, utc(2024, 1, 3, 14, 0))

    def test_modified_with_explicit_end(self):
        override = OccurrenceOverride(
            1, OverrideAction.MODIFIED,
            start=datetime(2024, 1, 3, 14, 0), end=datetime(2024, 1, 3, 16, 30),
            location='', description='Rescheduled',
        )
        modified = self.overlay([override])[1]

        self.assertEqual(modified.civil_end, datetime(2024, 1, 3, 16, 30))
        self.assertEqual(modified.location, '')
        self.assertEqual(modified.description, 'Rescheduled')

    def test_applying_same_override_twice(self):
        override = OccurrenceOverride(3, OverrideAction.MODIFIED, subject='Changed')
        self.assertEqual(self.overlay([override, override]), self.overlay([override]))

        cancel = OccurrenceOverride(0, OverrideAction.CANCELLED)
        self.assertEqual(self.overlay([cancel, cancel]), self.overlay([cancel]))

    def test_override_beyond_end_is_inert(self):
        overrides = [
            OccurrenceOverride(40, OverrideAction.CANCELLED),
            OccurrenceOverride(41, OverrideAction.MODIFIED, subject='Gone'),
        ]
        self.assertEqual(self.overlay(overrides), self.overlay([]))

    def test_stale_override_dropped_with_warning(self):
        stale = OccurrenceOverride(2, OverrideAction.CANCELLED, rule_version=7)
        with self.assertWarns(OverrideIndexStale):
            result = self.overlay([stale])
        self.assertEqual(len(result), 6)

    def test_current_version_override_applies(self):
        current = OccurrenceOverride(2, OverrideAction.CANCELLED, rule_version=1)
        self.assertEqual(len(self.overlay([current])), 5)


class MaterializeTest(SimpleTestCase):
    """Test windowed materialization"""

    def setUp(self):
        self.weekly = make_series(RecurrenceRule(Pattern.WEEKLY, 1, Count(6), MWF))
        self.daily = make_series(RecurrenceRule(Pattern.DAILY, 1, Count(30)), subject='Standup')

    def test_scenario_with_cancellation(self):
        result = materialize(
            self.weekly,
            [OccurrenceOverride(2, OverrideAction.CANCELLED)],
            utc(2024, 1, 1), utc(2024, 1, 31),
        )
        self.assertEqual(
            [occ.civil_start for occ in result],
            [datetime(2024, 1, d, 9, 0) for d in (1, 3, 8, 10, 12)],
        )
        self.assertFalse(any(occ.civil_start.date() == date(2024, 1, 15) for occ in result))

    def test_window_bounds_are_inclusive(self):
        result = materialize(self.daily, [], utc(2024, 1, 3, 9, 0), utc(2024, 1, 5, 9, 0))
        self.assertEqual([occ.occurrence_index for occ in result], [2, 3, 4])

    def test_window_equivalence(self):
        overrides = [
            OccurrenceOverride(3, OverrideAction.CANCELLED),
            OccurrenceOverride(20, OverrideAction.MODIFIED, start=datetime(2024, 1, 6, 12, 0)),
            OccurrenceOverride(7, OverrideAction.MODIFIED, start=datetime(2024, 1, 25, 7, 0)),
            OccurrenceOverride(9, OverrideAction.MODIFIED, subject='Renamed'),
        ]
        self.assert_windows_match_superset(self.daily, overrides, utc(2024, 1, 1), 10, timedelta(days=3))

    def test_window_equivalence_skipped_weeks(self):
        series = make_series(RecurrenceRule(
            Pattern.WEEKLY, 2, Count(40),
            frozenset({Weekday.SUNDAY, Weekday.MONDAY, Weekday.THURSDAY}),
        ))
        overrides = [OccurrenceOverride(4, OverrideAction.CANCELLED)]
        self.assert_windows_match_superset(series, overrides, utc(2023, 12, 28), 40, timedelta(days=3))

    def test_window_equivalence_month_end(self):
        series = make_series(RecurrenceRule(Pattern.MONTHLY, 1, Count(24)), start=datetime(2024, 1, 31, 9, 0))
        overrides = [OccurrenceOverride(3, OverrideAction.MODIFIED, start=datetime(2024, 6, 2, 9, 0))]
        self.assert_windows_match_superset(series, overrides, utc(2024, 1, 20), 60, timedelta(days=11))

    def assert_windows_match_superset(self, series, overrides, first_start, count, step):
        superset = materialize(series, overrides, utc(2023, 1, 1), utc(2027, 1, 1))
        self.assertTrue(superset)
        for n in range(count):
            window_start = first_start + n * step
            window_end = window_start + timedelta(days=4, hours=6)
            windowed = materialize(series, overrides, window_start, window_end)
            expected = [occ for occ in superset if window_start <= occ.start <= window_end]
            self.assertEqual(windowed, expected, window_start)

    def test_moved_occurrence_enters_window(self):
        overrides = [OccurrenceOverride(20, OverrideAction.MODIFIED, start=datetime(2024, 1, 2, 12, 0))]
        result = materialize(self.daily, overrides, utc(2024, 1, 2), utc(2024, 1, 2, 23, 59))

        self.assertEqual([occ.occurrence_index for occ in result], [1, 20])
        self.assertEqual(result[1].original_start, utc(2024, 1, 21, 9, 0))

    def test_moved_occurrence_leaves_window(self):
        overrides = [OccurrenceOverride(1, OverrideAction.MODIFIED, start=datetime(2024, 1, 20, 12, 0))]
        result = materialize(self.daily, overrides, utc(2024, 1, 2), utc(2024, 1, 2, 23, 59))
        self.assertEqual(result, [])

    def test_sorted_by_start(self):
        overrides = [OccurrenceOverride(0, OverrideAction.MODIFIED, start=datetime(2024, 1, 4, 18, 0))]
        result = materialize(self.daily, overrides, utc(2024, 1, 1), utc(2024, 1, 6))
        starts = [occ.start for occ in result]
        self.assertEqual(starts, sorted(starts))

    def test_far_window_does_not_walk_from_start(self):
        series = make_series(RecurrenceRule(Pattern.DAILY, 1, Count(1000000)))
        result = materialize(series, [], utc(2500, 1, 1), utc(2500, 1, 2), max_occurrences=100)
        self.assertEqual([occ.civil_start for occ in result], [datetime(2500, 1, 1, 9, 0)])

    def test_huge_window_is_capped(self):
        series = make_series(RecurrenceRule(Pattern.DAILY, 1, Count(1000000)))
        with self.assertRaises(GenerationBoundsExceeded):
            materialize(series, [], utc(2024, 1, 1), utc(2124, 1, 1), max_occurrences=100)

    def test_limit_counts_only_scanned_candidates(self):
        # Jan 1-4 plus one day of slack scans exactly five candidates
        window = (utc(2024, 1, 1), utc(2024, 1, 4, 23, 59))
        result = materialize(self.daily, [], *window, max_occurrences=5)
        self.assertEqual(len(result), 4)

        with self.assertRaises(GenerationBoundsExceeded):
            materialize(self.daily, [], *window, max_occurrences=4)

    def test_monthly_window(self):
        series = make_series(RecurrenceRule(Pattern.MONTHLY, 1, Count(24)), start=datetime(2024, 1, 31, 9, 0))
        result = materialize(series, [], utc(2025, 2, 1), utc(2025, 2, 28, 23, 59))
        self.assertEqual([occ.civil_start for occ in result], [datetime(2025, 2, 28, 9, 0)])
        self.assertEqual(result[0].occurrence_index, 13)

    def test_local_timezone_window(self):
        series = make_series(RecurrenceRule(Pattern.DAILY, 1, Count(5)), tz='Asia/Tokyo')
        # 09:00 in Tokyo is 00:00 UTC
        result = materialize(series, [], utc(2024, 1, 2), utc(2024, 1, 2))
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].civil_start, datetime(2024, 1, 2, 9, 0))

    def test_single_event(self):
        single = make_series(None, subject='Kickoff')
        self.assertEqual(len(materialize(single, [], utc(2024, 1, 1), utc(2024, 1, 2))), 1)
        self.assertEqual(materialize(single, [], utc(2024, 1, 2), utc(2024, 1, 3)), [])
        occurrence = materialize(single, [], utc(2024, 1, 1), utc(2024, 1, 2))[0]
        self.assertIsNone(occurrence.series_id)
        self.assertIsNone(occurrence.occurrence_index)

    def test_naive_window_rejected(self):
        with self.assertRaises(ValueError):
            materialize(self.daily, [], datetime(2024, 1, 1), datetime(2024, 1, 2))
