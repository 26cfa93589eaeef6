"""
Menu Catalog Tests

Runs against both gateways.

Tests:
  1. A dish cannot be filed under another restaurant's category
  2. A dish cannot reference a missing category
  3. Moving a dish keeps category and restaurant consistent
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from foodhub.core.errors import NotFoundError, StateConflictError
from foodhub.storage.base import DishFilter, DishRecord, MenuCategoryRecord, PageRequest
from foodhub.storage.memory import MemoryGateway
from foodhub.storage.sql import SqlGateway


@pytest_asyncio.fixture(params=["memory", "sql"])
async def gateway(request):
    if request.param == "memory":
        yield MemoryGateway()
        return
    sql_gateway = SqlGateway("sqlite+aiosqlite:///:memory:")
    await sql_gateway.initialize()
    yield sql_gateway
    await sql_gateway.close()


async def _category_of(gateway, dish_id: int) -> int:
    async with gateway.transaction() as uow:
        dish = await uow.dishes.get(dish_id)
    return dish.category_id


async def _dish_count(gateway, restaurant_id: int) -> int:
    async with gateway.transaction() as uow:
        page = await uow.dishes.list(DishFilter(restaurant_id=restaurant_id), PageRequest())
    return page.total


# ─── Create ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_dish_rejects_foreign_category(gateway, world):
    sushi_category = await _category_of(gateway, world.sushi_id)
    before = await _dish_count(gateway, world.restaurant_id)

    with pytest.raises(StateConflictError) as exc:
        async with gateway.transaction() as uow:
            await uow.dishes.create(
                DishRecord(
                    restaurant_id=world.restaurant_id,
                    category_id=sushi_category,
                    name="Nigiri",
                    price=Decimal("7.00"),
                )
            )

    assert exc.value.message == "Category does not belong to the specified restaurant"
    assert await _dish_count(gateway, world.restaurant_id) == before


@pytest.mark.asyncio
async def test_dish_rejects_missing_category(gateway, world):
    with pytest.raises(NotFoundError):
        async with gateway.transaction() as uow:
            await uow.dishes.create(
                DishRecord(
                    restaurant_id=world.restaurant_id,
                    category_id=9999,
                    name="Ghost",
                    price=Decimal("1.00"),
                )
            )


# ─── Update ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_dish_cannot_move_to_foreign_category(gateway, world):
    pizza_category = await _category_of(gateway, world.pizza_id)
    sushi_category = await _category_of(gateway, world.sushi_id)

    with pytest.raises(StateConflictError):
        async with gateway.transaction() as uow:
            await uow.dishes.update(world.pizza_id, category_id=sushi_category)
    with pytest.raises(StateConflictError):
        async with gateway.transaction() as uow:
            await uow.dishes.update(world.pizza_id, restaurant_id=world.other_restaurant_id)

    assert await _category_of(gateway, world.pizza_id) == pizza_category


@pytest.mark.asyncio
async def test_dish_moves_within_its_restaurant(gateway, world):
    async with gateway.transaction() as uow:
        desserts = await uow.categories.create(
            MenuCategoryRecord(restaurant_id=world.restaurant_id, name="Desserts")
        )
        moved = await uow.dishes.update(world.pizza_id, category_id=desserts.id)

    assert moved.category_id == desserts.id
    assert moved.restaurant_id == world.restaurant_id
