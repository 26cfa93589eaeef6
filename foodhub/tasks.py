"""
Celery Tasks
Background jobs run by the Celery worker.
"""

import asyncio
import time
from datetime import datetime, timezone

from foodhub.celery_worker import celery_app
from foodhub.core.config import get_logger
from foodhub.services.ratings import RatingAggregator
from foodhub.storage import create_gateway

logger = get_logger(__name__)


async def _run_rating_job() -> dict:
    # Fresh gateway per run: the engine's pool is bound to this event loop
    gateway = create_gateway()
    try:
        result = await RatingAggregator(gateway).run()
    finally:
        await gateway.close()
    return result.to_dict()


@celery_app.task(bind=True)
def recompute_restaurant_ratings(self) -> dict:
    """
    Recompute every restaurant's weighted average rating.

    Scheduled by celery beat (every 4 hours by default) and enqueued by
    the maintenance endpoint with ?background=true.

    Returns:
        dict: success / processed / errors / message
    """
    task_id = self.request.id
    logger.info(f"📊 Task {task_id}: Recomputing restaurant ratings")
    start_time = time.time()

    result = asyncio.run(_run_rating_job())

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed

    if result['success']:
        logger.info(f"✅ Task {task_id}: {result['message']} in {elapsed}s")
    else:
        logger.warning(f"⚠️ Task {task_id}: {result['message']} in {elapsed}s")

    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
