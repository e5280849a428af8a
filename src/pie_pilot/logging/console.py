"""Diagnostic logging setup for the command line."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str | int = "INFO") -> None:
    """
    Configure stderr logging for the pie_pilot loggers.

    Args:
        level: Level name or number (e.g. "DEBUG")
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger("pie_pilot")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # yfinance logs every failed symbol at ERROR; failures are handled here
    logging.getLogger("yfinance").setLevel(logging.CRITICAL)
