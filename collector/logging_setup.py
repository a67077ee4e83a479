"""Loguru sinks for the collector: terse stderr plus a detailed rotating file."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def configure_logging(log_path: Optional[Path] = None, verbose: bool = False) -> None:
    """Configure loguru logging.

    The console already gets a progress narrative from collector.ui, so stderr
    only shows warnings unless verbose; the file sink records everything.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | <cyan>{name}</cyan> - {message}",
        level="DEBUG" if verbose else "WARNING",
        colorize=True,
    )

    if log_path is not None:
        log_path = Path(log_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create log directory {log_path.parent}: {e}; file logging disabled")
            return
        logger.add(
            log_path,
            rotation="10 MB",
            retention="7 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name}:{function}:{line} - {message}",
            level="DEBUG",
        )
        logger.info(f"Logging to {log_path}")
