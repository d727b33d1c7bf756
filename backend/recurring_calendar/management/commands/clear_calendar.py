"""
Management command to clear all calendar data (calendars, series and overrides)
"""

from django.core.management.base import BaseCommand
from recurring_calendar.models import Calendar, EventSeries, OccurrenceOverride


class Command(BaseCommand):
    help = 'Clear all calendar data (calendars, series and overrides)'

    def add_arguments(self, parser):
        parser.add_argument(
            '--confirm',
            action='store_true',
            help='Confirm that you want to delete all data',
        )

    def handle(self, *args, **options):
        if not options['confirm']:
            self.stdout.write(
                self.style.WARNING(
                    'This will delete ALL calendar data. Use --confirm to proceed.'
                )
            )
            return

        override_count = OccurrenceOverride.objects.count()
        series_count = EventSeries.objects.count()
        calendar_count = Calendar.objects.count()
        # Series and overrides cascade from their calendar
        Calendar.objects.all().delete()

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully cleared {calendar_count} calendars, {series_count} event series '
                f'and {override_count} overrides'
            )
        )
