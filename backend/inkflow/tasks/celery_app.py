# backend/inkflow/tasks/celery_app.py
"""
Celery application configuration for InkFlow.

This module sets up the Celery app with Redis as the broker and configures
task serialization, timezone, routing and the beat schedule.
"""

import logging
from typing import Any

from celery import Celery
from celery.signals import setup_logging

from inkflow.core.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    broker_url = settings.redis_url or "redis://localhost:6379/0"

    celery_app = Celery("inkflow", broker=broker_url)

    celery_app.conf.update(
        {
            # Task settings
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": settings.studio_timezone,
            "enable_utc": True,
            "task_ignore_result": True,
            # Worker settings
            "worker_prefetch_multiplier": 4,
            "worker_max_tasks_per_child": 1000,
            # Task execution settings
            "task_soft_time_limit": 120,
            "task_time_limit": 300,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_default_retry_delay": settings.notification_retry_delay_seconds,
            "task_always_eager": settings.celery_task_always_eager,
            "worker_hijack_root_logger": False,
        }
    )

    celery_app.conf.task_routes = {
        "notifications.*": {"queue": "notifications"},
        "payments.*": {"queue": "payments"},
    }

    from inkflow.tasks.beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule()

    return celery_app


# Disable Celery's default logging configuration
@setup_logging.connect
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


# Create the Celery app instance
celery_app = create_celery_app()

# Register task modules on the app.
from inkflow.tasks import notification_tasks, payment_tasks  # noqa: E402,F401
