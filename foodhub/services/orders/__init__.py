"""
Order services: placement, numbering, pricing, status workflow and reads.
"""

from foodhub.services.orders.numbering import (
    OrderNumberGenerator,
    format_order_number,
    order_number_prefix,
    parse_sequence,
)
from foodhub.services.orders.placement import (
    OrderLine,
    OrderPlacementService,
    PlaceOrderRequest,
)
from foodhub.services.orders.pricing import OrderTotals, compute_totals
from foodhub.services.orders.queries import (
    OrderQueryService,
    can_manage_restaurant,
    can_view_order,
)
from foodhub.services.orders.status import (
    ALLOWED_TRANSITIONS,
    OrderStatusService,
    allowed_next,
    ensure_transition,
)

__all__ = [
    "OrderNumberGenerator",
    "format_order_number",
    "order_number_prefix",
    "parse_sequence",
    "OrderLine",
    "OrderPlacementService",
    "PlaceOrderRequest",
    "OrderTotals",
    "compute_totals",
    "OrderQueryService",
    "can_manage_restaurant",
    "can_view_order",
    "ALLOWED_TRANSITIONS",
    "OrderStatusService",
    "allowed_next",
    "ensure_transition",
]
