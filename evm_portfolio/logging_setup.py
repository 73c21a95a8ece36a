"""Root logger configuration for the command-line entry points."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers kept at WARNING regardless of the chosen level.
_NOISY_LOGGERS = ("aiohttp", "asyncio")
_HANDLER_NAME = "evm_portfolio"


def configure_logging(level: str = "INFO") -> None:
    """Set the root level and install a single stream handler.

    Unknown level names fall back to INFO. Calling it again replaces the
    handler installed by the previous call.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        if getattr(handler, "name", None) == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
