"""
Order read side and access rules.

Who sees what:
    - customers: their own orders
    - restaurant_staff: every order of the restaurant they work for
    - admin: everything
"""

import logging

from foodhub.core.errors import ForbiddenError, NotFoundError
from foodhub.models import UserRole
from foodhub.storage.base import (
    BaseGateway,
    OrderFilter,
    OrderRecord,
    Page,
    PageRequest,
    UserRecord,
)

logger = logging.getLogger(__name__)


def can_manage_restaurant(actor: UserRecord, restaurant_id: int) -> bool:
    if actor.role == UserRole.ADMIN:
        return True
    return actor.role == UserRole.RESTAURANT_STAFF and actor.restaurant_id == restaurant_id


def can_view_order(actor: UserRecord, order: OrderRecord) -> bool:
    return order.user_id == actor.id or can_manage_restaurant(actor, order.restaurant_id)


class OrderQueryService:

    def __init__(self, gateway: BaseGateway):
        self.gateway = gateway

    async def get_order(self, order_id: int, actor: UserRecord) -> OrderRecord:
        """
        Raises:
            NotFoundError: No such order
            ForbiddenError: Actor may not see it
        """
        async with self.gateway.transaction() as uow:
            order = await uow.orders.get(order_id)

        if order is None:
            raise NotFoundError("Order not found")
        if not can_view_order(actor, order):
            logger.warning(f"User {actor.id} denied access to order {order_id}")
            raise ForbiddenError("You do not have access to this order")
        return order

    async def list_user_orders(
        self,
        actor: UserRecord,
        filters: OrderFilter,
        page: PageRequest,
    ) -> Page[OrderRecord]:
        # The owner is always the actor, whatever the caller passed
        scoped = OrderFilter(
            user_id=actor.id,
            status=filters.status,
            placed_from=filters.placed_from,
            placed_to=filters.placed_to,
            sort_by=filters.sort_by,
            descending=filters.descending,
            include_items=filters.include_items,
        )
        async with self.gateway.transaction() as uow:
            return await uow.orders.list(scoped, page)

    async def list_restaurant_orders(
        self,
        restaurant_id: int,
        actor: UserRecord,
        filters: OrderFilter,
        page: PageRequest,
    ) -> Page[OrderRecord]:
        """
        Raises:
            NotFoundError: No such restaurant
            ForbiddenError: Actor is neither admin nor staff of the restaurant
        """
        scoped = OrderFilter(
            restaurant_id=restaurant_id,
            status=filters.status,
            placed_from=filters.placed_from,
            placed_to=filters.placed_to,
            sort_by=filters.sort_by,
            descending=filters.descending,
            include_items=True,
        )
        async with self.gateway.transaction() as uow:
            restaurant = await uow.restaurants.get(restaurant_id)
            if restaurant is None:
                raise NotFoundError("Restaurant not found")
            if not can_manage_restaurant(actor, restaurant_id):
                raise ForbiddenError("You do not have access to this restaurant's orders")
            return await uow.orders.list(scoped, page)
