"""
Portfolio module for the pie portfolio engine.

Provides the instrument catalogue loader, ticker normalization, market data
enrichment, and pie aggregation.
"""

from pie_pilot.portfolio.instruments import (
    load_all_metadata,
    normalize_ticker,
)
from pie_pilot.portfolio.performance import (
    Deadline,
    fetch_instrument_performance,
)
from pie_pilot.portfolio.pies import (
    fetch_all_pies,
    fetch_pie,
    summarize_pies,
)

__all__ = [
    "load_all_metadata",
    "normalize_ticker",
    "Deadline",
    "fetch_instrument_performance",
    "fetch_all_pies",
    "fetch_pie",
    "summarize_pies",
]
