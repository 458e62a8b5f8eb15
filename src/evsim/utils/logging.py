import logging
import sys

LOGGER_NAME = "evsim"


def get_logger():
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        # stdout carries tokens and claims; diagnostics go to stderr
        h = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)
        logger.setLevel(logging.INFO)
    return logger


def set_level(level):
    """Accepts a level name ("DEBUG") or number."""
    logger = get_logger()
    if isinstance(level, str):
        value = logging.getLevelName(level.upper())
        if not isinstance(value, int):
            raise ValueError(f"unknown log level {level!r}")
        level = value
    logger.setLevel(level)
    return logger
