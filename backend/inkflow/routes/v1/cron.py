# backend/inkflow/routes/v1/cron.py
"""
Scheduler hooks - API v1

External schedulers call these with ``Authorization: Bearer <CRON_SECRET>``.
They run the same service operations as the Celery beat tasks.

Endpoints:
    POST /cron/deposit-reminders - Remind clients with stale pending deposits
    POST /cron/balance-reminders - Request balances for tomorrow's sessions
    POST /cron/appointment-reminders - Queue 48 h and 24 h reminders
"""

import asyncio
import logging

from fastapi import APIRouter, Depends

from ...api.dependencies import (
    get_notification_service,
    get_payment_service,
    require_cron_secret,
)
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...schemas.payment import CronRunResponse
from ...services.notification_service import NotificationService
from ...services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cron",
    tags=["cron-v1"],
    dependencies=[Depends(require_cron_secret)],
    responses={401: {"description": "Missing or invalid token"}},
)


@router.post("/deposit-reminders", response_model=CronRunResponse)
async def run_deposit_reminders(
    payment_service: PaymentService = Depends(get_payment_service),
) -> CronRunResponse:
    try:
        sent = await asyncio.to_thread(payment_service.sweep_unpaid_deposits)
    except DomainException as e:
        handle_domain_exception(e)
    return CronRunResponse(job="deposit-reminders", sent=sent)


@router.post("/balance-reminders", response_model=CronRunResponse)
async def run_balance_reminders(
    payment_service: PaymentService = Depends(get_payment_service),
) -> CronRunResponse:
    try:
        sent = await asyncio.to_thread(payment_service.send_balance_reminders)
    except DomainException as e:
        handle_domain_exception(e)
    return CronRunResponse(job="balance-reminders", sent=sent)


@router.post("/appointment-reminders", response_model=CronRunResponse)
async def run_appointment_reminders(
    notification_service: NotificationService = Depends(get_notification_service),
) -> CronRunResponse:
    try:
        sent = await asyncio.to_thread(notification_service.send_appointment_reminders)
    except DomainException as e:
        handle_domain_exception(e)
    logger.info("Appointment reminders queued: %s", sent)
    return CronRunResponse(job="appointment-reminders", sent=sent)
