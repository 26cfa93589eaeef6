"""
Restaurant Rating Aggregator

Recomputes every restaurant's average_rating / rating_count from its
dishes, weighted by each dish's own rating_count:

    average = Σ(dish.average_rating × dish.rating_count) / Σ(dish.rating_count)

rounded to 8 decimal places. Restaurants without rated dishes get 0 / 0.

Runs on the Celery beat schedule and on demand from the maintenance
endpoint. Each restaurant is written in its own transaction; a failure
on one is logged and counted and the batch moves on. Running it twice
without rating changes in between gives the same result. It takes no
lock against a concurrent run of itself.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Any

from foodhub.services.orders.pricing import quantize_rating
from foodhub.storage.base import BaseGateway

logger = logging.getLogger(__name__)


@dataclass
class RatingRunResult:
    success: bool
    processed: int
    errors: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RatingAggregator:

    def __init__(self, gateway: BaseGateway):
        self.gateway = gateway

    async def _recompute_one(self, restaurant_id: int) -> tuple[Decimal, int]:
        async with self.gateway.transaction() as uow:
            dishes = await uow.dishes.list_rated_for_restaurant(restaurant_id)

            weighted = Decimal("0")
            count = 0
            for dish in dishes:
                weighted += Decimal(str(dish.average_rating)) * dish.rating_count
                count += dish.rating_count

            average = quantize_rating(weighted / count) if count else quantize_rating(0)
            await uow.restaurants.update(
                restaurant_id,
                average_rating=average,
                rating_count=count,
            )
        return average, count

    async def run(self) -> RatingRunResult:
        """Recompute all restaurants. Never raises."""
        logger.info("[Rating Job] Starting restaurant rating calculation...")

        try:
            async with self.gateway.transaction() as uow:
                restaurant_ids = await uow.restaurants.list_ids()
        except Exception as e:
            logger.exception(f"[Rating Job] Fatal error: {e}")
            return RatingRunResult(
                success=False,
                processed=0,
                errors=1,
                message="Failed to load restaurants",
            )

        processed = 0
        errors = 0
        for restaurant_id in restaurant_ids:
            try:
                average, count = await self._recompute_one(restaurant_id)
                logger.debug(
                    f"[Rating Job] Restaurant {restaurant_id}: "
                    f"average={average} count={count}"
                )
                processed += 1
            except Exception as e:
                logger.exception(
                    f"[Rating Job] Error processing restaurant {restaurant_id}: {e}"
                )
                errors += 1

        message = f"Processed {processed} restaurants"
        if errors:
            message += f", {errors} errors"

        logger.info(f"[Rating Job] Completed. Processed: {processed}, Errors: {errors}")
        return RatingRunResult(
            success=errors == 0,
            processed=processed,
            errors=errors,
            message=message,
        )
