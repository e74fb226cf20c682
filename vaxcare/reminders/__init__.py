"""Vaccination reminder engine (API, Celery worker, scheduler, dispatcher).

Models reminders, expands government vaccination schedules into dated
obligations, resolves live status, aggregates calendar/statistics views and
drives multi-channel notification dispatch.
"""
