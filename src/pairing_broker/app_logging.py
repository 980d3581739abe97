"""Logging setup for the broker process."""

import logging
from typing import TextIO

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(
    level: str = "INFO", stream: TextIO | None = None
) -> logging.Logger:
    """Attach one stream handler to the package logger.

    Calling it again only updates the level; the handler installed first
    stays in place so repeated app construction does not duplicate lines.
    """
    logger = logging.getLogger("pairing_broker")
    logger.setLevel(level.upper())
    if logger.handlers:
        return logger
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
