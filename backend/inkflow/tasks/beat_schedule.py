# backend/inkflow/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for InkFlow.

Crontab times are interpreted in the studio timezone (``timezone`` setting of
the Celery app).
"""

from typing import Any, Dict

from celery.schedules import crontab


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return {
        # Pending deposits older than DEPOSIT_REMINDER_AFTER_HOURS
        "sweep-unpaid-deposits": {
            "task": "payments.sweep_unpaid_deposits",
            "schedule": crontab(minute=0),
            "options": {"queue": "payments"},
        },
        # Day-before balance reminders
        "send-balance-reminders": {
            "task": "payments.send_balance_reminders",
            "schedule": crontab(hour=9, minute=0),
            "options": {"queue": "payments"},
        },
        # 48 h / 24 h appointment reminders
        "send-appointment-reminders": {
            "task": "notifications.send_appointment_reminders",
            "schedule": crontab(minute="*/30"),
            "options": {"queue": "notifications"},
        },
    }
