"""
Centralized task enqueue helper.

Always use enqueue_task() instead of task.delay() so that every producer
goes through one place (and one patch point in tests).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


def enqueue_task(
    task_name: str,
    args: Optional[Tuple[Any, ...]] = None,
    kwargs: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> Any:
    """
    Enqueue a Celery task by name.

    Args:
        task_name: Registered task name (e.g., "notifications.deliver_booking_notification")
        args: Positional arguments for the task
        kwargs: Keyword arguments for the task
        **options: Additional Celery apply_async options (countdown, queue, etc.)

    Returns:
        AsyncResult from Celery
    """
    from inkflow.tasks.celery_app import celery_app

    args = args or ()
    kwargs = kwargs or {}
    task = celery_app.tasks.get(task_name)
    if task is None:
        logger.debug("Task %s not registered locally; sending by name", task_name)
        return celery_app.send_task(task_name, args=args, kwargs=kwargs, **options)
    return task.apply_async(args=args, kwargs=kwargs, **options)
