"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend, and the
beat schedule for the order timeout sweeps.

Run:
    celery -A takeout.celery_worker worker --loglevel=info
    celery -A takeout.celery_worker beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from takeout.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'takeout_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['takeout.tasks']
)

celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.scheduler_timezone,
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    # Result settings
    result_expires=3600,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    'cancel-unpaid-orders': {
        'task': 'takeout.tasks.sweep_payment_timeouts',
        'schedule': crontab(minute=settings.payment_sweep_minute),
    },
    'cancel-stuck-deliveries': {
        'task': 'takeout.tasks.sweep_stuck_deliveries',
        'schedule': crontab(
            hour=settings.delivery_sweep_hour,
            minute=settings.delivery_sweep_minute,
        ),
    },
}


if __name__ == '__main__':
    celery_app.start()
