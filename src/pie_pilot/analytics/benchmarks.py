"""
Benchmark index returns for comparison with the portfolio.

One-year returns are measured from the first to the last close of a year of
daily history. When every lookup fails a static set is returned so the
dashboard always has something to compare against.
"""

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pie_pilot.models import Benchmark
from pie_pilot.data.providers.base import DataProviderError, MarketDataProvider

logger = logging.getLogger(__name__)


# (symbol, name, description)
BENCHMARK_INDICES = [
    ("^GSPC", "S&P 500", "Large-cap US stocks index"),
    ("URTH", "MSCI World", "Global developed markets index"),
    ("^FTSE", "FTSE 100", "UK large-cap stocks index"),
    ("VWO", "Emerging Markets", "Emerging markets index"),
    ("AGG", "US Bonds", "US aggregate bond index"),
]

# Fallback returns (percent) used when no benchmark can be fetched
DEFAULT_BENCHMARK_RETURNS = [
    ("^GSPC", "S&P 500", "Large-cap US stocks index", Decimal("9.5")),
    ("URTH", "MSCI World", "Global developed markets index", Decimal("7.8")),
    ("^FTSE", "FTSE 100", "UK large-cap stocks index", Decimal("5.2")),
]


def default_benchmarks(now: Optional[datetime] = None) -> list[Benchmark]:
    """Static benchmark set stamped with today's date."""
    updated = (now or datetime.now()).strftime("%Y-%m-%d")
    return [
        Benchmark(
            name=name,
            return_percentage=value,
            symbol=symbol,
            description=description,
            last_updated=updated,
        )
        for symbol, name, description, value in DEFAULT_BENCHMARK_RETURNS
    ]


def fetch_benchmarks(
    market_data: MarketDataProvider,
    now: Optional[datetime] = None,
) -> list[Benchmark]:
    """
    Fetch one-year returns for the benchmark indices.

    Args:
        market_data: Market data provider
        now: Reference time (defaults to now)

    Returns:
        Benchmarks that could be computed, or default_benchmarks() if none
    """
    now = now or datetime.now()
    start = (now - timedelta(days=365)).date()
    updated = now.strftime("%Y-%m-%d")

    benchmarks = []
    for symbol, name, description in BENCHMARK_INDICES:
        try:
            history = market_data.get_history(symbol, start, now.date())
        except DataProviderError as e:
            logger.warning("Error fetching benchmark %s: %s", name, e)
            continue

        closes = history["close"].dropna() if not history.empty else history
        if len(closes) < 2:
            logger.warning("Not enough history for benchmark %s", name)
            continue

        first, last = float(closes.iloc[0]), float(closes.iloc[-1])
        if not first:
            continue

        change = Decimal(str((last - first) / first * 100))
        benchmarks.append(Benchmark(
            name=name,
            return_percentage=change.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
            symbol=symbol,
            description=description,
            last_updated=updated,
        ))

    if not benchmarks:
        logger.warning("No benchmark data available, using defaults")
        return default_benchmarks(now)

    return benchmarks
