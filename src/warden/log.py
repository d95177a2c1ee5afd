"""
Logging setup.

All modules log through the loguru singleton; this only decides where the
records go.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Install the stderr sink and, optionally, a rotating file sink.

    Args:
        level: Minimum level (e.g. "DEBUG", "INFO")
        log_file: Optional path for a persistent log
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT, backtrace=False, diagnose=False)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=level.upper(),
            rotation="10 MB",
            retention="7 days",
            backtrace=False,
            diagnose=False,
        )

    logger.debug(f"Logging configured at {level.upper()}")
