"""Process-level logging setup.

Modules log through ``logging.getLogger(__name__)``; this only installs the
root handler once at process start.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vaultkeep.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure the root logger from settings.

    SQLAlchemy engine logging is left to ``database.echo``.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).info(
        "%s %s logging configured at %s",
        settings.app_name,
        settings.app_version,
        settings.log_level,
    )
