"""
Logging for the categorizer.

Every module logger writes to stdout in the same pipe-separated layout.
The level comes from the caller, then LOG_LEVEL, then INFO; names logging
does not know fall back to INFO.
"""
import logging
import os
import sys
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_level(level: Optional[Union[str, int]] = None) -> int:
    """Turn a level name or number into a logging level."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _stdout_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """
    Return the named logger with exactly one stdout handler.

    Calling again for the same name re-applies the level instead of
    stacking another handler.
    """
    log_level = resolve_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(log_level)
    else:
        logger.addHandler(_stdout_handler(log_level))
    return logger
