import logging
import sys
from ember_society.core.config import get_settings

LOGGER_NAME = "ember_society"


def setup_logging() -> logging.Logger:
    """Attach a stdout handler to the package logger (idempotent)."""
    settings = get_settings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.LOG_LEVEL)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
