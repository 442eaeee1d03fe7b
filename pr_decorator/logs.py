"""Loguru sink configuration."""

from __future__ import annotations

import sys

from loguru import logger


def configure_logging(log_level: str = "INFO") -> None:
    """Replace the default Loguru sink with a leveled stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=None,
    )
    logger.debug("Logging configured: level={}", log_level)
