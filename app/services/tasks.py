import asyncio

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_BACKEND,
)
celery_app.conf.task_routes = {
    "app.services.tasks.deliver_transaction_notification": {"queue": "notifications"},
    "app.services.tasks.retry_pending_notifications": {"queue": "notifications"},
    "app.services.tasks.rollover_all_quotas": {"queue": "quota"},
}
celery_app.conf.beat_schedule = {
    "monthly-quota-rollover": {
        "task": "app.services.tasks.rollover_all_quotas",
        "schedule": crontab(minute=5, hour=0, day_of_month=1),
    },
    "retry-pending-notifications": {
        "task": "app.services.tasks.retry_pending_notifications",
        "schedule": crontab(minute="*/15"),
    },
}
celery_app.conf.timezone = settings.REPORT_TIMEZONE


@celery_app.task(bind=True, max_retries=5)
def deliver_transaction_notification(self, transaction_id: int, payload: dict):
    from app.services.tasks_internal import deliver_notification_async

    try:
        delivered = asyncio.run(deliver_notification_async(transaction_id, payload))
    except Exception as e:
        raise self.retry(exc=e, countdown=2 ** self.request.retries)
    if not delivered:
        raise self.retry(countdown=2 ** self.request.retries)


@celery_app.task
def retry_pending_notifications():
    from app.services.tasks_internal import pending_notifications_async

    for transaction_id, payload in asyncio.run(pending_notifications_async()):
        deliver_transaction_notification.delay(transaction_id, payload)


@celery_app.task(bind=True, max_retries=3)
def rollover_all_quotas(self, month: str | None = None):
    from app.services.tasks_internal import rollover_all_async

    try:
        return asyncio.run(rollover_all_async(month))
    except Exception as e:
        raise self.retry(exc=e, countdown=2 ** self.request.retries)
