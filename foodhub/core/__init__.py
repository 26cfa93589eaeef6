"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from foodhub.core.config import (
    get_settings,
    setup_logging,
    Settings,
    EnvironmentMode,
    StorageBackend,
)
from foodhub.core.errors import FoodhubError

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "StorageBackend",
    "FoodhubError",
]
