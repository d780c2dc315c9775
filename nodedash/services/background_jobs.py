from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from nodedash.services.app_lifecycle import AppLifecycleService
from nodedash.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

HEALTH_SWEEP_JOB_ID = 'app_health_sweep'
WEBHOOK_CLEANUP_JOB_ID = 'webhook_log_cleanup'


def register_background_jobs(
    scheduler: BackgroundScheduler,
    lifecycle: AppLifecycleService,
    dispatcher: WebhookDispatcher,
    *,
    health_interval_seconds: int = 300,
    cleanup_interval_hours: int = 24,
) -> None:
    """Add the periodic health sweep and webhook log retention jobs."""
    scheduler.add_job(
        lifecycle.update_all_health_statuses,
        IntervalTrigger(seconds=health_interval_seconds),
        id=HEALTH_SWEEP_JOB_ID,
        name='App health sweep',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        dispatcher.cleanup_old_webhook_logs,
        IntervalTrigger(hours=cleanup_interval_hours),
        id=WEBHOOK_CLEANUP_JOB_ID,
        name='Webhook log cleanup',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Scheduled health sweep every %ss and webhook log cleanup every %sh",
        health_interval_seconds, cleanup_interval_hours,
    )
