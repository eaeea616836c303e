"""Celery tasks: notification delivery and scheduled payment sweeps."""
