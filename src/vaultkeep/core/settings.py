"""Process-wide settings accessor.

Usage:
    from vaultkeep.core.settings import get_settings

    settings = get_settings()
    signing_key = settings.crypto.signing_key.get_secret_value()

Settings are read from the environment once. Tests call
clear_settings_cache() between cases.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from vaultkeep.core.config import (
    ConfigValidationError,
    Settings,
    validate_settings,
)

logger = logging.getLogger(__name__)


def load_settings() -> Settings:
    """Read and validate settings from the environment, without caching.

    Raises:
        ValidationError: If a variable fails pydantic validation.
        ConfigValidationError: If the combination of values is unsafe.
    """
    settings = Settings()  # type: ignore[call-arg]
    validate_settings(settings)
    return settings


def describe_validation_error(error: ValidationError) -> str:
    """One line per failing field, as `  - crypto.signing_key: message`."""
    return "\n".join(
        f"  - {'.'.join(str(part) for part in detail['loc'])}: {detail['msg']}"
        for detail in error.errors()
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings on first use and return the same instance afterwards.

    Raises:
        SystemExit: If the configuration is invalid. Startup must not
            continue with a half-valid config.
    """
    logger.info("Loading application settings from environment")
    try:
        settings = load_settings()
    except ValidationError as e:
        logger.critical("Configuration validation failed:\n%s", describe_validation_error(e))
        raise SystemExit(1) from e
    except ConfigValidationError as e:
        logger.critical(
            "Configuration validation failed: %s (field: %s)",
            e.message,
            e.field or "unknown",
        )
        raise SystemExit(1) from e

    logger.info(
        "Configuration loaded: environment=%s, crypto_version=%s, policy_hash=%s",
        settings.environment.value,
        settings.crypto.config_version,
        settings.get_policy_hash()[:16] + "...",
    )
    return settings


def clear_settings_cache() -> None:
    """Forget the loaded settings so the next call re-reads the environment."""
    get_settings.cache_clear()
    logger.debug("Settings cache cleared")


def get_settings_safe() -> Settings | None:
    """Settings, or None when the configuration is invalid."""
    try:
        return get_settings()
    except SystemExit:
        return None
