"""The ``parcelflow`` logger tree.

Webhook intake, lifecycle transitions, settlement claims and the
notification workers all log below one ``parcelflow`` logger, so the
whole service shares one stdout handler and one line layout.
"""

import logging
import sys

from parcelflow.core.logging_config import LOGGING_CONFIG

ROOT_LOGGER = "parcelflow"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach the stdout handler to ``parcelflow`` and set its level.

    Safe to call again (tests build many apps): the handler is added
    only once, while ``level`` is re-applied every time.  Unknown level
    names fall back to INFO.  Records do not propagate to the root
    logger, which keeps uvicorn's own handler from printing them twice.
    """
    layout = LOGGING_CONFIG["formatters"]["default"]

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(layout["format"], datefmt=layout["datefmt"])
        )
        logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for module ``name``, placed under ``parcelflow`` if it is not already."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
