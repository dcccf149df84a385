"""Logger setup. Components log through loguru's global logger directly."""

import os
import sys
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function} | {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    rotation: str = "1 day",
    retention: str = "30 days",
) -> None:
    """Replace loguru's default sink with stderr and, optionally, a rotated daily file."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        logger.add(
            sink=os.path.join(log_dir, "{time:YYYY-MM-DD}.log"),
            rotation=rotation,
            retention=retention,
            level=level,
            format=LOG_FORMAT,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
    logger.debug("Logging configured at {}", level)
