from django.contrib import admin
from .models import Calendar, EventSeries, OccurrenceOverride


@admin.register(Calendar)
class CalendarAdmin(admin.ModelAdmin):
    list_display = ['name', 'timezone', 'color', 'created_at']
    search_fields = ['name']
    readonly_fields = ['created_at']


class OccurrenceOverrideInline(admin.TabularInline):
    model = OccurrenceOverride
    extra = 0


@admin.register(EventSeries)
class EventSeriesAdmin(admin.ModelAdmin):
    list_display = ['subject', 'calendar', 'pattern', 'anchor_start', 'termination', 'created_at']
    list_filter = ['pattern', 'calendar', 'created_at']
    search_fields = ['subject', 'description']
    readonly_fields = ['series_id', 'rule_version', 'override_version', 'created_at']
    inlines = [OccurrenceOverrideInline]
    ordering = ['-created_at']


@admin.register(OccurrenceOverride)
class OccurrenceOverrideAdmin(admin.ModelAdmin):
    list_display = ['series', 'occurrence_index', 'action', 'subject', 'created_at']
    list_filter = ['action', 'created_at']
    search_fields = ['series__subject', 'subject']
    readonly_fields = ['created_at']
    ordering = ['-created_at']
