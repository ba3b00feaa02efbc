"""Log sink setup."""

import sys

from loguru import logger


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Replace the default loguru sink with one at ``level``, optionally as JSON lines."""
    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level.upper(), serialize=True)
        return
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> - {message}",
    )
