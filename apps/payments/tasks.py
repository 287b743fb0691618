"""
Celery tasks for the auto-pay job.

run_auto_pay is scheduled daily by CELERY_BEAT_SCHEDULE and runs the
same processor as GET /cron/auto-pay. It is never retried: anything
left unpaid is picked up by the next scheduled run.
"""

import logging

from asgiref.sync import async_to_sync
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    name='payments.run_auto_pay',
    max_retries=0,
)
def run_auto_pay(self):
    """Run one auto-pay batch and return its result dict."""
    from apps.payments.processor import AutoPayProcessor

    logger.info("Auto-pay task %s started", self.request.id)
    result = async_to_sync(AutoPayProcessor().run)()
    return result.as_dict()
