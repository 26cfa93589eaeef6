"""
Rating Aggregation Tests

Tests:
  1. Weighted average over rated dishes, rounded to 8 places
  2. Restaurants without rated dishes get 0 / 0
  3. Re-running without rating changes gives the same result
  4. A failing restaurant is counted and the batch carries on
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from foodhub.services.ratings import RatingAggregator

from tests.conftest import _dish, _restaurant


async def _restaurant_rating(gateway, restaurant_id):
    async with gateway.transaction() as uow:
        restaurant = await uow.restaurants.get(restaurant_id)
    return restaurant.average_rating, restaurant.rating_count


@pytest_asyncio.fixture
async def rated(gateway):
    async with gateway.transaction() as uow:
        rated_id = await _restaurant(uow, "Rated")
        await _dish(uow, rated_id, "Five", "8.00", average_rating=Decimal("5.0"), rating_count=10)
        await _dish(uow, rated_id, "Three", "8.00", average_rating=Decimal("3.0"), rating_count=5)
        await _dish(uow, rated_id, "Unrated", "8.00", average_rating=Decimal("1.0"), rating_count=0)

        unrated_id = await _restaurant(uow, "Unrated", average_rating=Decimal("4.5"), rating_count=9)
        await _dish(uow, unrated_id, "Plain", "8.00")
    return rated_id, unrated_id


# ─── Aggregation ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_weighted_average(gateway, rated):
    rated_id, unrated_id = rated

    result = await RatingAggregator(gateway).run()

    assert result.success is True
    assert result.processed == 2
    assert result.errors == 0
    assert result.message == "Processed 2 restaurants"

    average, count = await _restaurant_rating(gateway, rated_id)
    assert average == Decimal("4.33333333")
    assert count == 15


@pytest.mark.asyncio
async def test_restaurant_without_rated_dishes_is_reset(gateway, rated):
    _, unrated_id = rated

    await RatingAggregator(gateway).run()

    average, count = await _restaurant_rating(gateway, unrated_id)
    assert average == Decimal("0")
    assert count == 0


@pytest.mark.asyncio
async def test_rerun_is_idempotent(gateway, rated):
    rated_id, _ = rated
    aggregator = RatingAggregator(gateway)

    await aggregator.run()
    first = await _restaurant_rating(gateway, rated_id)
    await aggregator.run()

    assert await _restaurant_rating(gateway, rated_id) == first


@pytest.mark.asyncio
async def test_empty_marketplace(gateway):
    result = await RatingAggregator(gateway).run()

    assert result.to_dict() == {
        "success": True,
        "processed": 0,
        "errors": 0,
        "message": "Processed 0 restaurants",
    }


# ─── Failures ──────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_failing_restaurant_is_counted(gateway, rated, monkeypatch):
    rated_id, unrated_id = rated
    aggregator = RatingAggregator(gateway)
    recompute = aggregator._recompute_one

    async def flaky(restaurant_id):
        if restaurant_id == unrated_id:
            raise RuntimeError("disk full")
        return await recompute(restaurant_id)

    monkeypatch.setattr(aggregator, "_recompute_one", flaky)

    result = await aggregator.run()

    assert result.success is False
    assert result.processed == 1
    assert result.errors == 1
    assert result.message == "Processed 1 restaurants, 1 errors"
    assert (await _restaurant_rating(gateway, rated_id))[1] == 15


@pytest.mark.asyncio
async def test_listing_failure_is_reported_not_raised(gateway, monkeypatch):
    def broken():
        raise ConnectionError("database unreachable")

    monkeypatch.setattr(gateway, "transaction", broken)

    result = await RatingAggregator(gateway).run()

    assert result.success is False
    assert result.errors == 1
    assert result.message == "Failed to load restaurants"
