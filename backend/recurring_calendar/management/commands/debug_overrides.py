"""
Debug command to list overrides and whether each still applies to its series
"""

from django.core.management.base import BaseCommand
from recurring_calendar.models import OccurrenceOverride
from recurring_calendar.services.generator import occurrence_at


class Command(BaseCommand):
    help = 'Debug occurrence overrides in the database'

    def handle(self, *args, **options):
        self.stdout.write('=== DEBUG: OccurrenceOverrides in Database ===')

        overrides = (
            OccurrenceOverride.objects.select_related('series__calendar')
            .order_by('series_id', 'occurrence_index')
        )
        if not overrides:
            self.stdout.write('No overrides found in database.')
            return

        for override in overrides:
            series = override.series
            if override.rule_version != series.rule_version:
                state = 'stale'
            elif occurrence_at(
                series.rule, series.anchor_start, series.anchor_end,
                series.calendar.timezone, override.occurrence_index,
            ) is None:
                state = 'inert (past end of series)'
            else:
                state = 'active'
            self.stdout.write(
                f'Series {series.series_id}: occurrence {override.occurrence_index} '
                f'{override.action} ({state})'
            )

        self.stdout.write(f'\nTotal overrides: {overrides.count()}')
