"""
Process-wide logging setup.

Modules log through `logging.getLogger(__name__)` and use
`event_name key=value ...` messages.
"""

from __future__ import annotations

import logging

from . import config

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    level = getattr(logging, config.log_level(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # asyncpg is chatty at DEBUG; keep it at the app level or above.
    logging.getLogger("asyncpg").setLevel(max(level, logging.INFO))
