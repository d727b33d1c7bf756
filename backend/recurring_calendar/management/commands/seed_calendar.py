"""
Management command to seed the calendar with sample data.
Creates a calendar with recurring series of each pattern and a few overrides.
"""

from datetime import datetime, timedelta

from django.core.management.base import BaseCommand
from recurring_calendar.models import Calendar, EventSeries, OccurrenceOverride
from recurring_calendar.services.rules import Count, Pattern, RecurrenceRule, Until, Weekday, validate


class Command(BaseCommand):
    help = 'Seed the calendar with sample series and overrides'

    def add_arguments(self, parser):
        parser.add_argument('--timezone', default='Europe/London', help='IANA timezone of the calendar')

    def _create(self, calendar, subject, start, minutes, rule=None, **fields):
        series = EventSeries(
            calendar=calendar,
            subject=subject,
            anchor_start=start,
            anchor_end=start + timedelta(minutes=minutes),
            **fields
        )
        series.set_rule(validate(rule, start) if rule else None)
        series.save()
        self.stdout.write(f'Created {series}')
        return series

    def handle(self, *args, **options):
        # Check if data already exists
        if EventSeries.objects.exists():
            self.stdout.write(
                self.style.WARNING(
                    f'Calendar already has {EventSeries.objects.count()} series. '
                    'Skipping seed to avoid duplicates. Use clear_calendar command first if needed.'
                )
            )
            return

        self.stdout.write('Seeding calendar data...')
        calendar = Calendar.objects.create(name='Team', timezone=options['timezone'], color='#3b82f6')

        # Civil times in the calendar's timezone
        today_9am = datetime.now().replace(hour=9, minute=0, second=0, microsecond=0)
        next_monday_9am = today_9am + timedelta(days=(7 - today_9am.weekday()) % 7 or 7)

        # 1. Team sync Mon/Wed/Fri, twelve times
        team_sync = self._create(
            calendar, 'Team Sync', next_monday_9am, 30,
            RecurrenceRule(
                Pattern.WEEKLY, 1, Count(12),
                frozenset({Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY}),
            ),
            location='Room 1',
            description='Team synchronization meeting',
        )

        # 2. Daily standup for a month
        standup = self._create(
            calendar, 'Daily Standup', today_9am.replace(hour=8, minute=30), 15,
            RecurrenceRule(Pattern.DAILY, 1, Until((today_9am + timedelta(days=30)).date())),
        )

        # 3. Monthly review on the 31st, clamped in shorter months
        self._create(
            calendar, 'Monthly Review', today_9am.replace(day=31, month=1, hour=14), 60,
            RecurrenceRule(Pattern.MONTHLY, 1, Count(12)),
        )

        # 4. Yearly planning every other year
        self._create(
            calendar, 'Planning Offsite', today_9am.replace(month=3, day=1), 480,
            RecurrenceRule(Pattern.YEARLY, 2, Count(5)),
        )

        # 5. One-off event
        self._create(calendar, 'Project Kickoff', today_9am.replace(hour=16), 60,
                     description='Initial project planning and kickoff session')

        # 6. Overrides: move the second team sync, cancel a standup
        OccurrenceOverride.objects.create(
            series=team_sync,
            occurrence_index=1,
            action='MODIFIED',
            subject='Team Sync (Delayed)',
            start=next_monday_9am + timedelta(days=2, hours=1),
            description='Moved 1 hour later due to conflicting meeting',
        )
        OccurrenceOverride.objects.create(series=standup, occurrence_index=4, action='CANCELLED')

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully seeded calendar with {EventSeries.objects.count()} event series '
                f'and {OccurrenceOverride.objects.count()} overrides'
            )
        )
