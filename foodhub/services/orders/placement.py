"""
Order Placement Engine

Validates an order against live restaurant and dish state, prices it,
numbers it and writes the order with its lines in one transaction.

Steps (all inside gateway.transaction()):
    1. Load the restaurant FOR UPDATE; 404 if missing, 400 if inactive
    2. Load the referenced dishes of that restaurant FOR UPDATE; 400 if
       any id is unknown or belongs to another restaurant
    3. 400 listing the dishes that are not available
    4. Snapshot each dish price into its line
    5. 400 if the subtotal is below the restaurant minimum
    6. Delivery fee, service charge, tax, total (see pricing)
    7. Next order number for the year, then order + lines
    8. Commit; any exception above rolls everything back
    9. Return the order reloaded with items and restaurant summary

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from foodhub.core.errors import (
    BelowMinimumOrderError,
    DishUnavailableError,
    InvalidItemsError,
    NotFoundError,
    RestaurantInactiveError,
    StateConflictError,
)
from foodhub.models import OrderStatus
from foodhub.services.orders.numbering import OrderNumberGenerator
from foodhub.services.orders.pricing import compute_totals, line_subtotal, quantize_money
from foodhub.services.security import Clock, utcnow
from foodhub.storage.base import BaseGateway, OrderItemRecord, OrderRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderLine:
    """One requested line of a new order."""
    dish_id: int
    quantity: int
    special_instructions: Optional[str] = None


@dataclass(frozen=True)
class PlaceOrderRequest:
    user_id: int
    restaurant_id: int
    items: Sequence[OrderLine]
    delivery_address: str
    delivery_instructions: Optional[str] = None


class OrderPlacementService:
    """
    Places orders atomically.

    Example:
        >>> service = OrderPlacementService(gateway)
        >>> order = await service.place_order(PlaceOrderRequest(
        ...     user_id=1,
        ...     restaurant_id=3,
        ...     items=[OrderLine(dish_id=10, quantity=2)],
        ...     delivery_address="12 Rue de la Paix",
        ... ))
        >>> order.order_number
        'ORD-2026-000001'
    """

    def __init__(
        self,
        gateway: BaseGateway,
        numbers: Optional[OrderNumberGenerator] = None,
        clock: Optional[Clock] = None,
    ):
        self.gateway = gateway
        self.numbers = numbers or OrderNumberGenerator()
        self._clock = clock or utcnow

    async def place_order(self, request: PlaceOrderRequest) -> OrderRecord:
        if not request.items:
            raise StateConflictError("Order must contain at least one item")
        for line in request.items:
            if line.quantity < 1:
                raise StateConflictError(f"Quantity for dish {line.dish_id} must be at least 1")

        async with self.gateway.transaction() as uow:
            # 1. Restaurant
            restaurant = await uow.restaurants.get(request.restaurant_id, for_update=True)
            if restaurant is None:
                raise NotFoundError("Restaurant not found")
            if not restaurant.is_active:
                raise RestaurantInactiveError()

            # 2. Dishes, scoped to the restaurant
            dish_ids = {line.dish_id for line in request.items}
            dishes = await uow.dishes.find_for_restaurant(
                sorted(dish_ids),
                restaurant.id,
                for_update=True,
            )
            if len(dishes) != len(dish_ids):
                raise InvalidItemsError()

            # 3. Availability
            unavailable = [
                {"id": dish.id, "name": dish.name}
                for dish in dishes if not dish.is_available
            ]
            if unavailable:
                raise DishUnavailableError(unavailable)

            # 4. Price snapshots
            dishes_by_id = {dish.id: dish for dish in dishes}
            lines = []
            subtotal = Decimal("0.00")
            for line in request.items:
                price = quantize_money(dishes_by_id[line.dish_id].price)
                amount = line_subtotal(price, line.quantity)
                subtotal += amount
                lines.append(
                    OrderItemRecord(
                        dish_id=line.dish_id,
                        quantity=line.quantity,
                        price_at_order=price,
                        subtotal=amount,
                        special_instructions=line.special_instructions,
                    )
                )

            # 5. Minimum order
            minimum_order = quantize_money(restaurant.minimum_order)
            if subtotal < minimum_order:
                raise BelowMinimumOrderError(minimum_order, subtotal)

            # 6. Totals
            totals = compute_totals(
                subtotal,
                restaurant.delivery_fee,
                restaurant.service_charge_rate,
                restaurant.tax_rate,
            )

            # 7. Number, order, lines
            placed_at = self._clock()
            order_number = await self.numbers.next(uow, placed_at.year)

            order = await uow.orders.create(
                OrderRecord(
                    order_number=order_number,
                    user_id=request.user_id,
                    restaurant_id=restaurant.id,
                    status=OrderStatus.PENDING,
                    subtotal=totals.subtotal,
                    delivery_fee=totals.delivery_fee,
                    service_charge=totals.service_charge,
                    tax_amount=totals.tax_amount,
                    total_amount=totals.total_amount,
                    delivery_address=request.delivery_address,
                    delivery_instructions=request.delivery_instructions,
                    placed_at=placed_at,
                )
            )
            await uow.order_items.create_many(order.id, lines)

            # 9. Reload with items and restaurant summary
            created = await uow.orders.get(order.id)

        logger.info(
            f"Order {created.order_number} placed by user {request.user_id} "
            f"at restaurant {restaurant.id}: total {created.total_amount}"
        )
        return created
