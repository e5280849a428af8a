"""
Abstract base class for market data providers.

Defines the interface the pie fetcher and benchmark comparison use to look up
dividend yields and daily closes, so market data sources stay pluggable.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

import pandas as pd


class DataProviderError(Exception):
    """Raised when a data provider encounters an error."""
    pass


class MarketDataProvider(ABC):
    """
    Abstract base class for market data providers.

    Implementations must provide methods to fetch:
    - The trailing dividend yield of a symbol
    - Daily closing prices of a symbol over a date range
    """

    @abstractmethod
    def get_dividend_yield(self, symbol: str) -> Optional[float]:
        """
        Fetch the dividend yield of a symbol.

        Args:
            symbol: Market-data ticker symbol (e.g. VOD.L)

        Returns:
            Dividend yield in percent, or None if the symbol pays none

        Raises:
            DataProviderError: If data cannot be fetched
        """
        pass

    @abstractmethod
    def get_history(
        self,
        symbol: str,
        start_date: date,
        end_date: date,
    ) -> pd.DataFrame:
        """
        Fetch daily closing prices for a symbol.

        Args:
            symbol: Market-data ticker symbol
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            DataFrame with columns: date, close, sorted by date

        Raises:
            DataProviderError: If data cannot be fetched
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the name of this data provider."""
        pass
