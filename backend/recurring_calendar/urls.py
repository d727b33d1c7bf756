"""
URL configuration for recurring_calendar.
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import CalendarViewSet, EventSeriesViewSet, occurrences_view

# Create router for viewsets
router = DefaultRouter()
router.register(r'calendars', CalendarViewSet)
router.register(r'series', EventSeriesViewSet)

urlpatterns = [
    # Include viewset URLs
    path('', include(router.urls)),

    # Custom endpoint for materialized occurrences
    path('occurrences/', occurrences_view, name='occurrences'),
]
