"""
Order number generation.

Format: ORD-<4-digit year>-<6-digit zero padded sequence>, e.g. ORD-2026-000042.

The sequence lives in a per-year counter that is bumped under a row
lock inside the placing transaction, so two concurrent placements can
never receive the same number. A rolled back placement also rolls back
its counter bump, so the number is handed to the next order.
"""

import logging
import re
from typing import Optional

from foodhub.storage.base import UnitOfWork

logger = logging.getLogger(__name__)

ORDER_NUMBER_PATTERN = re.compile(r"^ORD-(\d{4})-(\d+)$")


def order_number_prefix(year: int) -> str:
    return f"ORD-{year:04d}-"


def format_order_number(year: int, sequence: int) -> str:
    return f"{order_number_prefix(year)}{sequence:06d}"


def parse_sequence(order_number: Optional[str]) -> int:
    """Numeric suffix of an order number, 0 when absent or malformed."""
    if not order_number:
        return 0
    match = ORDER_NUMBER_PATTERN.match(order_number)
    return int(match.group(2)) if match else 0


class OrderNumberGenerator:
    """
    Hands out the next order number of a year.

    The first number of a year seeds the counter from the greatest order
    number already stored with that year's prefix, so counters created
    after a data import continue where the data left off.
    """

    async def next(self, uow: UnitOfWork, year: int) -> str:
        sequence = await uow.order_numbers.increment(year)

        if sequence is None:
            latest = await uow.orders.max_order_number_with_prefix(order_number_prefix(year))
            start = parse_sequence(latest)
            if not await uow.order_numbers.initialize(year, start):
                logger.debug(f"Order number counter for {year} created concurrently")
            sequence = await uow.order_numbers.increment(year)

        return format_order_number(year, sequence)
