"""
SQL Gateway Tests

Runs the service layer against SqlGateway on an in-memory SQLite database
(aiosqlite), so the ORM mapping, Numeric round-trips and transaction
rollback are exercised the same way they are on PostgreSQL.

Tests:
  1. Order placement end-to-end with exact Decimal totals
  2. Failed placement rolls back every write
  3. Order number counter seeding and sequencing
  4. Refresh token rotation and mass revocation
  5. Rating aggregation precision
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from foodhub.core.errors import (
    BelowMinimumOrderError,
    ConflictError,
    InvalidItemsError,
    SecurityAlertError,
)
from foodhub.models import OrderStatus
from foodhub.services.orders import OrderLine, OrderNumberGenerator, PlaceOrderRequest
from foodhub.storage.base import RefreshTokenFilter, PageRequest, UserRecord
from foodhub.storage.sql import SqlGateway

from tests.conftest import _dish, _restaurant


@pytest_asyncio.fixture
async def gateway():
    """Replaces the in-memory gateway for every fixture in this module."""
    sql_gateway = SqlGateway("sqlite+aiosqlite:///:memory:")
    await sql_gateway.initialize()
    yield sql_gateway
    await sql_gateway.close()


def _request(world, *lines) -> PlaceOrderRequest:
    return PlaceOrderRequest(
        user_id=world.customer.id,
        restaurant_id=world.restaurant_id,
        items=list(lines),
        delivery_address="1 Main St",
    )


# ─── Placement ─────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_place_order_round_trips_decimals(services, world, stored_orders):
    order = await services.placement.place_order(
        _request(
            world,
            OrderLine(dish_id=world.pizza_id, quantity=2),
            OrderLine(dish_id=world.salad_id, quantity=1),
        )
    )

    fetched = await services.queries.get_order(order.id, world.customer)

    assert fetched.subtotal == Decimal("25.00")
    assert fetched.service_charge == Decimal("1.35")
    assert fetched.tax_amount == Decimal("2.84")
    assert fetched.total_amount == Decimal("31.19")
    assert fetched.placed_at.tzinfo is not None
    assert {item.dish_name for item in fetched.items} == {"Pizza", "Salad"}
    assert fetched.restaurant.name == "Trattoria"
    assert await stored_orders() == (1, 2)


@pytest.mark.asyncio
async def test_failed_placements_leave_nothing(services, world, stored_orders):
    with pytest.raises(BelowMinimumOrderError):
        await services.placement.place_order(
            _request(world, OrderLine(dish_id=world.salad_id, quantity=1))
        )
    with pytest.raises(InvalidItemsError):
        await services.placement.place_order(
            _request(
                world,
                OrderLine(dish_id=world.pizza_id, quantity=1),
                OrderLine(dish_id=world.sushi_id, quantity=1),
            )
        )

    assert await stored_orders() == (0, 0)

    order = await services.placement.place_order(
        _request(world, OrderLine(dish_id=world.pizza_id, quantity=1))
    )
    assert order.order_number.endswith("-000001")


@pytest.mark.asyncio
async def test_status_update_persists(services, world):
    order = await services.placement.place_order(
        _request(world, OrderLine(dish_id=world.pizza_id, quantity=1))
    )
    eta = datetime(2030, 1, 1, 19, 30, tzinfo=timezone.utc)

    updated = await services.statuses.update_status(
        order.id, OrderStatus.CONFIRMED, world.staff, estimated_delivery_time=eta
    )

    assert updated.status == OrderStatus.CONFIRMED
    assert updated.estimated_delivery_time == eta


# ─── Order numbers ─────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_order_number_counter(gateway):
    numbers = OrderNumberGenerator()

    async with gateway.transaction() as uow:
        assert await numbers.next(uow, 2026) == "ORD-2026-000001"
        assert await numbers.next(uow, 2026) == "ORD-2026-000002"

    async with gateway.transaction() as uow:
        assert await numbers.next(uow, 2026) == "ORD-2026-000003"
        assert await uow.order_numbers.initialize(2026, 500) is False


# ─── Refresh tokens ────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_rotation_and_reuse_detection(services, gateway, world):
    first = await services.ledger.issue(world.customer, device_info="laptop")
    second = await services.ledger.rotate(first.refresh_token)

    with pytest.raises(SecurityAlertError):
        await services.ledger.rotate(first.refresh_token)

    async with gateway.transaction() as uow:
        page = await uow.refresh_tokens.list(
            RefreshTokenFilter(user_id=world.customer.id, is_revoked=False),
            PageRequest(),
        )
    assert page.total == 0
    with pytest.raises(SecurityAlertError):
        await services.ledger.rotate(second.refresh_token)


# ─── Constraints ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_duplicate_email_is_conflict(gateway, world):
    with pytest.raises(ConflictError):
        async with gateway.transaction() as uow:
            await uow.users.create(
                UserRecord(email="customer@example.com", name="Dup", password_hash="x")
            )


# ─── Ratings ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_rating_precision(services, gateway):
    async with gateway.transaction() as uow:
        restaurant_id = await _restaurant(uow, "Rated")
        await _dish(uow, restaurant_id, "Five", "8.00", average_rating=Decimal("5.0"), rating_count=10)
        await _dish(uow, restaurant_id, "Three", "8.00", average_rating=Decimal("3.0"), rating_count=5)

    result = await services.ratings.run()

    assert result.processed == 1
    async with gateway.transaction() as uow:
        restaurant = await uow.restaurants.get(restaurant_id)
    assert restaurant.average_rating == Decimal("4.33333333")
    assert restaurant.rating_count == 15
