"""
Persistence Gateway Factory

Provides a single entry point for obtaining a gateway instance.
The rest of the application stays agnostic about which implementation
is being used.

Usage:
    from foodhub.storage import get_gateway

    # Returns SqlGateway or MemoryGateway based on STORAGE_BACKEND
    gateway = get_gateway()

    async with gateway.transaction() as uow:
        order = await uow.orders.get(42)

Backend Switching:
    - STORAGE_BACKEND=sql → SqlGateway (PostgreSQL)
    - STORAGE_BACKEND=memory → MemoryGateway (in-process, development/tests)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache
from typing import Optional

from foodhub.core.config import Settings, StorageBackend, get_settings
from foodhub.storage.base import BaseGateway, UnitOfWork
from foodhub.storage.memory import MemoryGateway
from foodhub.storage.sql import SqlGateway

logger = logging.getLogger(__name__)


def create_gateway(settings: Optional[Settings] = None) -> BaseGateway:
    """
    Build a new, uncached gateway.

    Celery tasks use this so every run owns an engine bound to its own
    event loop, and dispose it afterwards.
    """
    settings = settings or get_settings()

    if settings.storage_backend == StorageBackend.MEMORY:
        logger.info("Storage: Using MemoryGateway")
        return MemoryGateway()

    logger.info("Storage: Using SqlGateway")
    return SqlGateway(settings.database_url, echo=settings.database_echo)


@lru_cache()
def get_gateway() -> BaseGateway:
    """
    Get the configured gateway instance.

    The instance is cached so the API process shares one engine and
    connection pool.

    Returns:
        BaseGateway: Configured gateway instance
    """
    return create_gateway()


def reset_gateway() -> None:
    """
    Clear the cached gateway instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_gateway.cache_clear()
    logger.debug("Gateway cache cleared")


__all__ = [
    "get_gateway",
    "create_gateway",
    "reset_gateway",
    "BaseGateway",
    "UnitOfWork",
    "MemoryGateway",
    "SqlGateway",
]
