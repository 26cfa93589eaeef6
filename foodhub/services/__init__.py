"""
                        Services Module

Contains all business logic services, wired to one persistence gateway.

Services:
    - security: bcrypt hashing and JWT encoding
    - token_ledger: refresh token issue / rotate / revoke
    - accounts: register, login, Google login, access token auth
    - orders: placement, status workflow, reads
    - ratings: restaurant rating aggregation

Usage:
    from foodhub.services import get_services

    services = get_services()
    order = await services.placement.place_order(request)
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from foodhub.core.config import Settings, get_settings
from foodhub.services.accounts import AccountService
from foodhub.services.orders import (
    OrderPlacementService,
    OrderQueryService,
    OrderStatusService,
)
from foodhub.services.ratings import RatingAggregator
from foodhub.services.security import Clock
from foodhub.services.token_ledger import TokenLedger
from foodhub.storage import get_gateway
from foodhub.storage.base import BaseGateway

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every service of the application, sharing one gateway."""
    gateway: BaseGateway
    settings: Settings
    ledger: TokenLedger
    accounts: AccountService
    placement: OrderPlacementService
    statuses: OrderStatusService
    queries: OrderQueryService
    ratings: RatingAggregator


def build_services(
    gateway: BaseGateway,
    settings: Settings,
    clock: Optional[Clock] = None,
) -> Services:
    """Wire all services around an explicit gateway and settings."""
    ledger = TokenLedger.from_settings(gateway, settings, clock=clock)
    return Services(
        gateway=gateway,
        settings=settings,
        ledger=ledger,
        accounts=AccountService(gateway, ledger, clock=clock),
        placement=OrderPlacementService(gateway, clock=clock),
        statuses=OrderStatusService(gateway),
        queries=OrderQueryService(gateway),
        ratings=RatingAggregator(gateway),
    )


@lru_cache()
def get_services() -> Services:
    """
    Get the application's services, built once per process.

    Returns:
        Services: Services bound to get_gateway()
    """
    services = build_services(get_gateway(), get_settings())
    logger.info(f"Services wired to {services.gateway.provider_name} gateway")
    return services


def reset_services() -> None:
    """Clear the cached services (tests, configuration reloads)."""
    get_services.cache_clear()
    logger.debug("Services cache cleared")


__all__ = [
    "Services",
    "build_services",
    "get_services",
    "reset_services",
]
