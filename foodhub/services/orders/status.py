"""
Order Status State Machine

    pending ──► confirmed ──► preparing ──► ready ──► out_for_delivery ──► delivered
       │            │             │           │               │
       └────────────┴─────────────┴───────────┴───────────────┴──────────► cancelled

delivered and cancelled are terminal.
"""

import logging
from datetime import datetime
from typing import Optional

from foodhub.core.errors import ForbiddenError, IllegalTransitionError, NotFoundError
from foodhub.models import OrderStatus
from foodhub.services.orders.queries import can_manage_restaurant
from foodhub.storage.base import BaseGateway, OrderRecord, UserRecord

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    OrderStatus.PREPARING: (OrderStatus.READY, OrderStatus.CANCELLED),
    OrderStatus.READY: (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}


def allowed_next(current: OrderStatus) -> tuple[OrderStatus, ...]:
    return ALLOWED_TRANSITIONS.get(current, ())


def ensure_transition(current: OrderStatus, requested: OrderStatus) -> None:
    """Raise IllegalTransitionError unless current -> requested is allowed."""
    allowed = allowed_next(current)
    if requested not in allowed:
        raise IllegalTransitionError(
            current=current.value,
            requested=requested.value,
            allowed=[status.value for status in allowed],
        )


class OrderStatusService:

    def __init__(self, gateway: BaseGateway):
        self.gateway = gateway

    async def update_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        actor: UserRecord,
        estimated_delivery_time: Optional[datetime] = None,
        actual_delivery_time: Optional[datetime] = None,
    ) -> OrderRecord:
        """
        Move an order to a new status.

        The delivery times are written as given, None included.

        Raises:
            NotFoundError: No such order
            ForbiddenError: Actor is neither admin nor staff of the restaurant
            IllegalTransitionError: Transition not allowed from current status
        """
        async with self.gateway.transaction() as uow:
            order = await uow.orders.get(order_id, for_update=True)
            if order is None:
                raise NotFoundError("Order not found")
            if not can_manage_restaurant(actor, order.restaurant_id):
                raise ForbiddenError("You do not have permission to update this order")

            ensure_transition(order.status, new_status)

            updated = await uow.orders.update(
                order_id,
                status=new_status,
                estimated_delivery_time=estimated_delivery_time,
                actual_delivery_time=actual_delivery_time,
            )

        logger.info(
            f"Order {updated.order_number}: {order.status.value} -> {new_status.value} "
            f"(by user {actor.id})"
        )
        return updated
