"""
Order Status Workflow Tests

Tests:
  1. Forward transitions and cancellation from every non-terminal status
  2. Terminal statuses reject everything and report the allowed list
  3. Only admins and staff of the order's restaurant may move an order
  4. Delivery times are written exactly as given
"""
from datetime import datetime, timedelta, timezone

import pytest

from foodhub.core.errors import ForbiddenError, IllegalTransitionError, NotFoundError
from foodhub.models import OrderStatus
from foodhub.services.orders import (
    ALLOWED_TRANSITIONS,
    OrderLine,
    PlaceOrderRequest,
    allowed_next,
    ensure_transition,
)

FORWARD = [
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]


@pytest.fixture
def place(services, world):
    async def _place():
        return await services.placement.place_order(
            PlaceOrderRequest(
                user_id=world.customer.id,
                restaurant_id=world.restaurant_id,
                items=[OrderLine(dish_id=world.pizza_id, quantity=2)],
                delivery_address="1 Main St",
            )
        )
    return _place


# ─── Transition table ──────────────────────────────────────────────────────────
def test_every_non_terminal_status_can_be_cancelled():
    for status, targets in ALLOWED_TRANSITIONS.items():
        if status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
            assert targets == ()
        else:
            assert OrderStatus.CANCELLED in targets, f"{status} should allow cancellation"


def test_skipping_a_step_is_illegal():
    with pytest.raises(IllegalTransitionError) as exc:
        ensure_transition(OrderStatus.PENDING, OrderStatus.READY)

    assert exc.value.allowed == ["confirmed", "cancelled"]
    assert "Cannot transition from pending to ready" in exc.value.message


def test_going_backwards_is_illegal():
    with pytest.raises(IllegalTransitionError):
        ensure_transition(OrderStatus.PREPARING, OrderStatus.CONFIRMED)


@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_statuses_allow_nothing(terminal):
    assert allowed_next(terminal) == ()
    for target in OrderStatus:
        with pytest.raises(IllegalTransitionError) as exc:
            ensure_transition(terminal, target)
        assert exc.value.details == {"allowed_transitions": []}


# ─── Service ───────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_staff_walks_order_to_delivered(services, world, place):
    order = await place()

    for target in FORWARD:
        order = await services.statuses.update_status(order.id, target, world.staff)
        assert order.status == target

    with pytest.raises(IllegalTransitionError):
        await services.statuses.update_status(order.id, OrderStatus.CANCELLED, world.staff)


@pytest.mark.asyncio
async def test_admin_can_cancel_any_order(services, world, place):
    order = await place()

    cancelled = await services.statuses.update_status(order.id, OrderStatus.CANCELLED, world.admin)

    assert cancelled.status == OrderStatus.CANCELLED
    with pytest.raises(IllegalTransitionError):
        await services.statuses.update_status(order.id, OrderStatus.CONFIRMED, world.admin)


@pytest.mark.asyncio
@pytest.mark.parametrize("actor_key", ["customer", "other_customer", "other_staff"])
async def test_outsiders_cannot_update_status(services, world, place, actor_key):
    order = await place()

    with pytest.raises(ForbiddenError):
        await services.statuses.update_status(
            order.id, OrderStatus.CONFIRMED, getattr(world, actor_key)
        )

    unchanged = await services.queries.get_order(order.id, world.admin)
    assert unchanged.status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_missing_order_is_not_found(services, world):
    with pytest.raises(NotFoundError):
        await services.statuses.update_status(4242, OrderStatus.CONFIRMED, world.admin)


@pytest.mark.asyncio
async def test_delivery_times_are_written_verbatim(services, world, place):
    order = await place()
    eta = datetime(2030, 1, 1, 19, 30, tzinfo=timezone.utc)

    order = await services.statuses.update_status(
        order.id, OrderStatus.CONFIRMED, world.staff, estimated_delivery_time=eta
    )
    assert order.estimated_delivery_time == eta
    assert order.actual_delivery_time is None

    # Omitting the estimate on the next update clears it
    order = await services.statuses.update_status(order.id, OrderStatus.PREPARING, world.staff)
    assert order.estimated_delivery_time is None

    delivered_at = eta + timedelta(minutes=5)
    order = await services.statuses.update_status(
        order.id, OrderStatus.CANCELLED, world.staff, actual_delivery_time=delivered_at
    )
    assert order.actual_delivery_time == delivered_at


@pytest.mark.asyncio
async def test_illegal_transition_leaves_order_untouched(services, world, place):
    order = await place()

    with pytest.raises(IllegalTransitionError) as exc:
        await services.statuses.update_status(order.id, OrderStatus.DELIVERED, world.staff)

    assert exc.value.to_dict()["allowed_transitions"] == ["confirmed", "cancelled"]
    reloaded = await services.queries.get_order(order.id, world.staff)
    assert reloaded.status == OrderStatus.PENDING
