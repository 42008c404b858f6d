"""Process-wide logging configuration for the CLI entry point."""
from __future__ import annotations

import logging

from puzzlecraft.config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings.

    Library modules only ever call ``logging.getLogger(__name__)``; this is
    the single place handlers and levels are installed.
    """
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO; keep it out of normal output.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
