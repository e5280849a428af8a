"""
Dividend yield and trailing price performance per instrument.

Performance over a window is measured from the last close on or before the
window boundary to the latest close in a year of daily history.
"""

import logging
import math
import time
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

import pandas as pd

from pie_pilot.models import PERFORMANCE_FIELDS, InstrumentPerformance
from pie_pilot.data.providers.base import DataProviderError, MarketDataProvider
from pie_pilot.portfolio.instruments import normalize_ticker

logger = logging.getLogger(__name__)


# Window length in calendar days, keyed by the PieInstrument field it fills
PERFORMANCE_WINDOWS = dict(zip(PERFORMANCE_FIELDS, (1, 7, 30, 90, 365)))

HISTORY_DAYS = 365


class Deadline:
    """
    Point in monotonic time after which a refresh stops starting work.

    Deadline(None) never expires.
    """

    def __init__(
        self,
        seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left (never negative), or None when unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())


def close_at_or_before(history: pd.DataFrame, boundary) -> Optional[float]:
    """Last close dated on or before ``boundary``, or None if there is none."""
    if history.empty:
        return None
    eligible = history[history["date"] <= boundary]
    if eligible.empty:
        return None
    close = eligible["close"].iloc[-1]
    if pd.isna(close):
        return None
    return float(close)


def calculate_window_performance(
    history: pd.DataFrame,
    now: datetime,
    days: int,
) -> Optional[float]:
    """
    Percent change from the close at ``now - days`` to the latest close.

    Args:
        history: Date-sorted DataFrame with columns date, close
        now: Reference time of the refresh
        days: Window length in calendar days

    Returns:
        Percent change, or None when either close is missing or the past close is 0
    """
    if history.empty:
        return None

    latest = history["close"].iloc[-1]
    if pd.isna(latest) or not latest:
        return None

    past = close_at_or_before(history, (now - timedelta(days=days)).date())
    if not past:
        return None

    return (float(latest) - past) / past * 100


def calculate_performance(history: pd.DataFrame, now: datetime) -> dict[str, Optional[float]]:
    """Evaluate every performance window against one history frame."""
    return {
        field_name: calculate_window_performance(history, now, days)
        for field_name, days in PERFORMANCE_WINDOWS.items()
    }


def round_yield(value: Optional[float]) -> Decimal:
    """Dividend yield to 2 decimal places, 0 when absent or not finite."""
    if not value or not math.isfinite(value):
        return Decimal("0")
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def fetch_instrument_performance(
    market_data: MarketDataProvider,
    ticker: str,
    now: Optional[datetime] = None,
    deadline: Optional[Deadline] = None,
) -> InstrumentPerformance:
    """
    Fetch dividend yield and trailing performance for a broker ticker.

    Failures never propagate: if either the quote or the history lookup
    fails, or the provider returns data that cannot be evaluated, the
    result is InstrumentPerformance.unavailable().

    Args:
        market_data: Market data provider
        ticker: Broker ticker (normalized here)
        now: Reference time (defaults to now)
        deadline: Refresh deadline; once expired no lookup is made
    """
    if deadline is not None and deadline.expired:
        return InstrumentPerformance.unavailable()

    now = now or datetime.now()
    symbol = normalize_ticker(ticker)

    try:
        return _lookup_performance(market_data, ticker, symbol, now, deadline)
    except Exception as e:
        logger.error("Unexpected error evaluating %s (%s): %s", ticker, symbol, e)
        return InstrumentPerformance.unavailable()


def _lookup_performance(
    market_data: MarketDataProvider,
    ticker: str,
    symbol: str,
    now: datetime,
    deadline: Optional[Deadline],
) -> InstrumentPerformance:
    try:
        dividend_yield = round_yield(market_data.get_dividend_yield(symbol))
    except DataProviderError as e:
        logger.warning("Quote lookup failed for %s (%s): %s", ticker, symbol, e)
        return InstrumentPerformance.unavailable()

    if deadline is not None and deadline.expired:
        return InstrumentPerformance.unavailable()

    try:
        history = market_data.get_history(
            symbol,
            (now - timedelta(days=HISTORY_DAYS)).date(),
            now.date(),
        )
    except DataProviderError as e:
        logger.warning("History lookup failed for %s (%s): %s", ticker, symbol, e)
        return InstrumentPerformance.unavailable()

    performance = InstrumentPerformance(dividend_yield=dividend_yield)
    for field_name, value in calculate_performance(history, now).items():
        setattr(performance, field_name, value)

    return performance
