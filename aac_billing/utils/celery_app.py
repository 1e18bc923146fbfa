"""
Celery Application
Background billing jobs: clearinghouse status polling and the unbilled-session sweep
Source: https://docs.celeryq.dev/en/stable/getting-started/first-steps-with-celery.html
"""

from celery import Celery
from celery.schedules import crontab

from aac_billing.api.config import settings
from aac_billing.core.config import get_billing_settings

billing_settings = get_billing_settings()

celery_app = Celery(
    "aac_billing",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Periodic jobs
# Source: https://docs.celeryq.dev/en/stable/userguide/periodic-tasks.html
celery_app.conf.beat_schedule = {
    "poll-claim-statuses": {
        "task": "billing.poll_claim_statuses",
        "schedule": billing_settings.STATUS_POLL_INTERVAL_MINUTES * 60.0,
    },
    "bill-unbilled-sessions": {
        "task": "billing.bill_unbilled_sessions",
        "schedule": crontab(hour=2, minute=0),
    },
}

celery_app.autodiscover_tasks(["aac_billing.tasks"], related_name="billing_tasks")
