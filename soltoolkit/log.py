"""
Logging helpers shared by every toolkit module.
"""

import logging
import os
import sys

ROOT_LOGGER = "soltoolkit"
LOG_FORMAT = "%(asctime)s - [%(name)s] - %(levelname)s - %(message)s"

_handler: logging.Handler | None = None


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the toolkit namespace."""
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(verbose: bool = False) -> logging.Logger:
    """Install one stream handler on the toolkit logger.

    Level is DEBUG when verbose, otherwise SOLTOOLKIT_LOG_LEVEL (default INFO).
    Calling it again only adjusts the level.
    """
    global _handler

    logger = logging.getLogger(ROOT_LOGGER)
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(_handler)

    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, os.getenv("SOLTOOLKIT_LOG_LEVEL", "INFO").upper(), logging.INFO)
    logger.setLevel(level)
    return logger
