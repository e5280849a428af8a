"""
Logging module for the pie portfolio engine.

Provides the append-only refresh log for audit and the stderr diagnostic
logging setup used by the CLI.
"""

from pie_pilot.logging.console import setup_logging
from pie_pilot.logging.refresh_log import (
    DecimalEncoder,
    RefreshLogger,
    get_refresh_logger,
)

__all__ = [
    "setup_logging",
    "DecimalEncoder",
    "RefreshLogger",
    "get_refresh_logger",
]
