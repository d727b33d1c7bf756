from django.apps import AppConfig


class RecurringCalendarConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'recurring_calendar'
    verbose_name = 'Recurring calendar'
