"""
Yahoo Finance data provider implementation.

Uses the yfinance library to fetch dividend yields and daily closing prices
for the instruments held in pies and for benchmark indices.
"""

import logging
import math
import time
from datetime import date, timedelta
from typing import Optional

import pandas as pd
import yfinance as yf

from pie_pilot.data.providers.base import DataProviderError, MarketDataProvider
from pie_pilot.data.providers.rate_limit import TokenBucketRateLimiter

logger = logging.getLogger(__name__)


class YFinanceProvider(MarketDataProvider):
    """
    Market data provider using Yahoo Finance.

    Features:
    - Dividend yield from the quote summary (already in percent)
    - Daily adjusted closes via Ticker.history
    - Optional token bucket shared by concurrent workers
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
    ):
        """
        Initialize Yahoo Finance provider.

        Args:
            max_retries: Maximum attempts per lookup
            retry_delay: Base delay between attempts (seconds)
            rate_limiter: Optional limiter acquired before each lookup
        """
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._rate_limiter = rate_limiter

    @property
    def name(self) -> str:
        return "YahooFinance"

    def _throttle(self) -> None:
        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

    def get_dividend_yield(self, symbol: str) -> Optional[float]:
        """
        Fetch the dividend yield for a symbol.

        Args:
            symbol: Yahoo symbol (e.g. AAPL, VOD.L)

        Returns:
            Yield in percent, or None if Yahoo reports none
        """
        last_error = None
        for attempt in range(self._max_retries):
            self._throttle()
            try:
                info = yf.Ticker(symbol).info or {}
            except Exception as e:
                last_error = e
            else:
                return _parse_yield(symbol, info.get("dividendYield"))

            if attempt < self._max_retries - 1:
                time.sleep(self._retry_delay * (attempt + 1))

        raise DataProviderError(
            f"Failed to fetch quote for {symbol} after {self._max_retries} attempts: {last_error}"
        )

    def get_history(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
    ) -> pd.DataFrame:
        """
        Fetch daily closing prices.

        Args:
            symbol: Yahoo symbol
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            DataFrame with columns: date, close (empty if Yahoo has no rows)
        """
        last_error = None
        for attempt in range(self._max_retries):
            self._throttle()
            try:
                # yfinance expects end_date to be exclusive, so add 1 day
                df = yf.Ticker(symbol).history(
                    start=start_date.isoformat(),
                    end=(end_date + timedelta(days=1)).isoformat(),
                    interval="1d",
                    auto_adjust=True,
                )
                return _closes_frame(df)
            except Exception as e:
                last_error = e

            if attempt < self._max_retries - 1:
                time.sleep(self._retry_delay * (attempt + 1))

        raise DataProviderError(
            f"Failed to fetch history for {symbol} after {self._max_retries} attempts: {last_error}"
        )


def _parse_yield(symbol: str, value) -> Optional[float]:
    if value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise DataProviderError(f"Invalid dividend yield for {symbol}: {value!r}")
    if not math.isfinite(parsed):
        raise DataProviderError(f"Invalid dividend yield for {symbol}: {value!r}")
    return parsed


def _closes_frame(df: Optional[pd.DataFrame]) -> pd.DataFrame:
    """Reduce a yfinance history frame to sorted (date, close) rows."""
    if df is None or df.empty or "Close" not in df.columns:
        return pd.DataFrame(columns=["date", "close"])

    result = pd.DataFrame({
        "date": [idx.date() if hasattr(idx, "date") else idx for idx in df.index],
        "close": df["Close"].astype(float).values,
    })
    result = result.dropna(subset=["close"])
    return result.sort_values("date").reset_index(drop=True)
