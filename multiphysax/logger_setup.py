"""Logger configuration for multiphysax."""

import logging
import os


def setup_logger(name: str) -> logging.Logger:
    """Create the package logger.

    The level is read from the ``MULTIPHYSAX_LOG_LEVEL`` environment variable
    and defaults to ``INFO``.

    Args:
        name (str): Logger name, normally the package ``__name__``.

    Returns:
        logging.Logger: Configured logger with a single stream handler.
    """
    logger = logging.getLogger(name)
    level = os.environ.get("MULTIPHYSAX_LOG_LEVEL", "INFO").upper()
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s][%(levelname)s] %(name)s: %(message)s",
            datefmt="%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger
