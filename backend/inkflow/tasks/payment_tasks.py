# backend/inkflow/tasks/payment_tasks.py
"""Scheduled payment sweeps, driven by Celery beat."""

from __future__ import annotations

from celery.utils.log import get_task_logger

from inkflow.services.payment_service import PaymentService
from inkflow.tasks.celery_app import celery_app
from inkflow.tasks.worker_db import session_scope

logger = get_task_logger(__name__)


@celery_app.task(name="payments.sweep_unpaid_deposits", queue="payments")
def sweep_unpaid_deposits() -> int:
    """Remind clients whose gateway deposit is still pending."""
    with session_scope() as session:
        count = PaymentService(session).sweep_unpaid_deposits()
    logger.info("Queued %s deposit reminders", count)
    return count


@celery_app.task(name="payments.send_balance_reminders", queue="payments")
def send_balance_reminders() -> int:
    """Request outstanding balances for tomorrow's confirmed sessions."""
    with session_scope() as session:
        count = PaymentService(session).send_balance_reminders()
    logger.info("Queued %s balance reminders", count)
    return count
