"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend,
plus the beat schedule for periodic jobs.

Run:
    celery -A foodhub.celery_worker worker --loglevel=info
    celery -A foodhub.celery_worker beat --loglevel=info
"""

from celery import Celery
from celery.schedules import crontab

from foodhub.core.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    'foodhub_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['foodhub.tasks']  # Module containing our tasks
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Worker settings
    worker_prefetch_multiplier=1,  # Process one task at a time
    worker_concurrency=4,  # Number of worker processes

    # Result settings
    result_expires=3600,  # Results expire after 1 hour

    # Task execution settings
    task_acks_late=True,  # Acknowledge task after completion
    task_reject_on_worker_lost=True,  # Requeue task if worker dies

    broker_connection_retry_on_startup=True,
)

# Periodic jobs
celery_app.conf.beat_schedule = {
    'recompute-restaurant-ratings': {
        'task': 'foodhub.tasks.recompute_restaurant_ratings',
        'schedule': crontab(minute=0, hour=f'*/{settings.rating_recalc_interval_hours}'),
    },
}


if __name__ == '__main__':
    celery_app.start()
