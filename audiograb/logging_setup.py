"""Logging initialization helpers."""
from __future__ import annotations

import logging

from .config import AppSettings


def setup_logging(settings: AppSettings) -> None:
    """Configure the ``audiograb`` logger tree from settings.

    Framework loggers (uvicorn, httpx) are left alone.
    """
    logger = logging.getLogger("audiograb")
    if getattr(logger, "_audiograb_configured", False):
        return

    level = getattr(logging, str(settings.logging.level).upper(), logging.INFO)
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(settings.logging.format))

    logger.setLevel(level)
    logger.handlers = [handler]
    logger.propagate = False
    setattr(logger, "_audiograb_configured", True)
