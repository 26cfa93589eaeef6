"""
Shared fixtures.

Every test gets its own in-memory gateway and a fully wired set of
services with a low bcrypt cost so hashing stays fast.
"""
import os
from dataclasses import dataclass
from decimal import Decimal

# Must be set before foodhub.main reads the settings
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("TOKEN_HASH_ROUNDS", "4")

import pytest
import pytest_asyncio

from foodhub.core.config import Settings, StorageBackend
from foodhub.models import UserRole
from foodhub.services import Services, build_services
from foodhub.storage.base import (
    DishRecord,
    MenuCategoryRecord,
    OrderFilter,
    PageRequest,
    RestaurantRecord,
    UserRecord,
)
from foodhub.storage.memory import MemoryGateway

PASSWORD = "Passw0rd!"


@dataclass
class World:
    """Ids of the seeded marketplace."""
    restaurant_id: int
    other_restaurant_id: int
    inactive_restaurant_id: int
    pizza_id: int          # 10.00, restaurant
    salad_id: int          # 5.00, restaurant
    soup_id: int           # 7.50, restaurant, unavailable
    sushi_id: int          # 9.00, other restaurant
    closed_dish_id: int    # inactive restaurant
    customer: UserRecord
    other_customer: UserRecord
    staff: UserRecord
    other_staff: UserRecord
    admin: UserRecord


# ─── Core fixtures ─────────────────────────────────────────────────────────────
@pytest.fixture
def settings() -> Settings:
    return Settings(
        storage_backend=StorageBackend.MEMORY,
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        access_token_expiry="15m",
        refresh_token_expiry="7d",
        token_hash_rounds=4,
    )


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def services(gateway, settings) -> Services:
    return build_services(gateway, settings)


# ─── Seed data ─────────────────────────────────────────────────────────────────
async def _restaurant(uow, name: str, **overrides) -> int:
    values = dict(
        name=name,
        address=f"1 {name} Street",
        minimum_order=Decimal("10.00"),
        delivery_fee=Decimal("2.00"),
        service_charge_rate=Decimal("0.05"),
        tax_rate=Decimal("0.10"),
    )
    values.update(overrides)
    restaurant = await uow.restaurants.create(RestaurantRecord(**values))
    return restaurant.id


async def _dish(uow, restaurant_id: int, name: str, price: str, **overrides) -> int:
    category = await uow.categories.create(
        MenuCategoryRecord(restaurant_id=restaurant_id, name=f"{name} category")
    )
    dish = await uow.dishes.create(
        DishRecord(
            restaurant_id=restaurant_id,
            category_id=category.id,
            name=name,
            price=Decimal(price),
            **overrides,
        )
    )
    return dish.id


@pytest_asyncio.fixture
async def world(gateway, services) -> World:
    password_hash = await services.ledger.hasher.hash(PASSWORD)

    async with gateway.transaction() as uow:
        restaurant_id = await _restaurant(uow, "Trattoria")
        other_restaurant_id = await _restaurant(uow, "Sakura")
        inactive_restaurant_id = await _restaurant(uow, "Closed Diner", is_active=False)

        pizza_id = await _dish(uow, restaurant_id, "Pizza", "10.00")
        salad_id = await _dish(uow, restaurant_id, "Salad", "5.00")
        soup_id = await _dish(uow, restaurant_id, "Soup", "7.50", is_available=False)
        sushi_id = await _dish(uow, other_restaurant_id, "Sushi", "9.00")
        closed_dish_id = await _dish(uow, inactive_restaurant_id, "Stew", "12.00")

        users = {}
        for key, role, works_at in [
            ("customer", UserRole.CUSTOMER, None),
            ("other_customer", UserRole.CUSTOMER, None),
            ("staff", UserRole.RESTAURANT_STAFF, restaurant_id),
            ("other_staff", UserRole.RESTAURANT_STAFF, other_restaurant_id),
            ("admin", UserRole.ADMIN, None),
        ]:
            users[key] = await uow.users.create(
                UserRecord(
                    email=f"{key}@example.com",
                    name=key.replace("_", " ").title(),
                    password_hash=password_hash,
                    role=role,
                    restaurant_id=works_at,
                )
            )

    return World(
        restaurant_id=restaurant_id,
        other_restaurant_id=other_restaurant_id,
        inactive_restaurant_id=inactive_restaurant_id,
        pizza_id=pizza_id,
        salad_id=salad_id,
        soup_id=soup_id,
        sushi_id=sushi_id,
        closed_dish_id=closed_dish_id,
        **users,
    )


@pytest.fixture
def stored_orders(gateway):
    """Async callable returning (order count, order line count)."""
    async def _count() -> tuple[int, int]:
        async with gateway.transaction() as uow:
            page = await uow.orders.list(
                OrderFilter(include_items=True),
                PageRequest(page=1, limit=1000),
            )
        return page.total, sum(len(order.items) for order in page.items)
    return _count
