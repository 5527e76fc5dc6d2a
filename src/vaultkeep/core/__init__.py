"""VaultKeep core module.

Shared components used across all services:
- Configuration management
- Logging setup
- Clock abstraction
"""

from vaultkeep.core.clock import Clock, FixedClock, SystemClock
from vaultkeep.core.config import (
    ConfigValidationError,
    CryptoSettings,
    DatabaseSettings,
    Environment,
    Settings,
    VaultSettings,
)
from vaultkeep.core.logging import configure_logging
from vaultkeep.core.settings import (
    clear_settings_cache,
    get_settings,
    get_settings_safe,
)

__all__ = [
    "Clock",
    "ConfigValidationError",
    "CryptoSettings",
    "DatabaseSettings",
    "Environment",
    "FixedClock",
    "Settings",
    "SystemClock",
    "VaultSettings",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "get_settings_safe",
]
