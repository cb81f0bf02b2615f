import logging

from .config import settings


def setup_logging() -> None:
    """Configures global logging based on the LOG_* settings."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=settings.LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S"
    )
