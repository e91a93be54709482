import logging
import os
import sys
from typing import Optional

BASE_LOGGER = "product_studio"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logger(level: int = logging.INFO, name: str = BASE_LOGGER) -> logging.Logger:
    """Create or update the project logger.

    PRODUCT_STUDIO_LOG_LEVEL overrides ``level`` on every call, and exactly one
    stderr StreamHandler is kept on the base logger no matter how often this runs.
    """
    logger = logging.getLogger(name)

    env_level = (os.getenv("PRODUCT_STUDIO_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVELS.get(env_level, level)
    logger.setLevel(level)

    stream_handler: Optional[logging.StreamHandler] = None
    for h in list(logger.handlers):
        if type(h) is logging.StreamHandler:
            stream_handler = h
            break

    if stream_handler is None:
        stream_handler = logging.StreamHandler(stream=sys.stderr)
        logger.addHandler(stream_handler)
    elif stream_handler.stream is not sys.stderr:
        # sys.stderr may have been swapped (test capture, service wrappers)
        stream_handler.setStream(sys.stderr)

    stream_handler.setFormatter(
        logging.Formatter(fmt="[%(asctime)s] %(levelname)s: %(message)s", datefmt="%H:%M:%S")
    )

    # uvicorn installs its own root handlers; keep our lines from printing twice
    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    base = logging.getLogger(BASE_LOGGER)
    return base if not name else base.getChild(name)
